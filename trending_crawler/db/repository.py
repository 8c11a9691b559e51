import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from trending_crawler import schemas
from trending_crawler.db.models import CrawlSession, TrendingSnapshot, EnrichmentSnapshot, AnalysisRecord

logger = logging.getLogger("repository")


def _since(**delta) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


def _snapshot_map(saved: Sequence[schemas.SavedSnapshot]) -> Dict[int, int]:
    return {s.rank: s.snapshot_id for s in saved}


class TrendingRepository:
    """
    Append-only writes for one crawl cycle plus the read queries used by the API.

    Every write is a single batch committed on its own; a failure rolls the
    batch back and re-raises so the caller can abandon the cycle.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, what: str):
        try:
            self.db.commit()
        except Exception as e:
            logger.error(f"[DB] Error saving {what}: {e}")
            self.db.rollback()
            raise

    # Writes

    def create_session(self) -> int:
        session = CrawlSession(created_at=datetime.now(timezone.utc), done=False)
        self.db.add(session)
        self._commit("crawl session")
        logger.info(f"[DB] crawl_sessions saved (session id: {session.id})")
        return session.id

    def save_trending_snapshots(self, session_id: int, terms: Sequence[schemas.TrendingKeyword]) -> List[schemas.SavedSnapshot]:
        """Insert one snapshot per term and return their ids in input order"""
        rows = [
            TrendingSnapshot(crawl_session_id=session_id, rank=t.rank, keyword=t.keyword, url=t.url)
            for t in terms
        ]
        self.db.add_all(rows)
        self._commit("trending snapshots")
        logger.info(f"[DB] trending_snapshots saved ({len(rows)} rows)")
        return [
            schemas.SavedSnapshot(rank=t.rank, keyword=t.keyword, snapshot_id=row.id)
            for t, row in zip(terms, rows)
        ]

    def save_enrichment_snapshots(self, terms: Sequence[schemas.TrendingWithReason], saved: Sequence[schemas.SavedSnapshot]) -> int:
        ids = _snapshot_map(saved)
        rows = [
            EnrichmentSnapshot(trending_snapshot_id=ids[t.rank], post_detail=t.reason.model_dump())
            for t in terms
            if t.reason is not None and t.rank in ids
        ]
        if not rows:
            logger.warning("[DB] No enrichment snapshots to save")
            return 0
        self.db.add_all(rows)
        self._commit("enrichment snapshots")
        logger.info(f"[DB] enrichment_snapshots saved ({len(rows)} rows)")
        return len(rows)

    def save_analysis_records(self, analyses: Sequence[schemas.AnalysisResult], saved: Sequence[schemas.SavedSnapshot]) -> int:
        ids = _snapshot_map(saved)
        rows = []
        for a in analyses:
            snapshot_id = ids.get(a.rank)
            if snapshot_id is None:
                logger.warning(f"[DB] Analysis for rank {a.rank} has no snapshot, skipped")
                continue
            rows.append(AnalysisRecord(
                trending_snapshot_id=snapshot_id,
                keyword=a.keyword,
                summary=a.summary,
                reason=a.reason,
                public_opinion=a.public_opinion,
                related_info=a.related_info.model_dump(),
                related_links=[link.model_dump() for link in a.related_links],
                related_images=[image.model_dump() for image in a.related_images],
            ))
        if not rows:
            logger.warning("[DB] No analysis records to save")
            return 0
        self.db.add_all(rows)
        self._commit("analysis records")
        logger.info(f"[DB] analysis_records saved ({len(rows)} rows)")
        return len(rows)

    def mark_session_done(self, session_id: int):
        self.db.query(CrawlSession).filter(CrawlSession.id == session_id).update({CrawlSession.done: True})
        self._commit("session completion")
        logger.info(f"[DB] crawl_sessions marked done (session id: {session_id})")

    # Reads, always restricted to completed sessions

    def _completed(self):
        return self.db.query(CrawlSession).filter(CrawlSession.done == True)  # noqa: E712

    def _analyses_by_snapshot(self, snapshot_ids: List[int]) -> Dict[int, AnalysisRecord]:
        if not snapshot_ids:
            return {}
        rows = self.db.query(AnalysisRecord).filter(AnalysisRecord.trending_snapshot_id.in_(snapshot_ids)).all()
        return {row.trending_snapshot_id: row for row in rows}

    @staticmethod
    def _entry(snapshot: TrendingSnapshot, analysis: Optional[AnalysisRecord]) -> schemas.TrendingEntry:
        return schemas.TrendingEntry(
            id=snapshot.id,
            rank=snapshot.rank,
            keyword=snapshot.keyword,
            url=snapshot.url,
            ai_analysis=schemas.AnalysisRecord.model_validate(analysis) if analysis else None,
        )

    def _ranked(self, session_id: int, limit: Optional[int] = None) -> List[TrendingSnapshot]:
        query = (
            self.db.query(TrendingSnapshot)
            .filter(TrendingSnapshot.crawl_session_id == session_id)
            .order_by(TrendingSnapshot.rank)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def latest_completed(self) -> schemas.LatestTrending:
        session = self._completed().order_by(CrawlSession.created_at.desc(), CrawlSession.id.desc()).first()
        if session is None:
            return schemas.LatestTrending()
        snapshots = self._ranked(session.id)
        analyses = self._analyses_by_snapshot([s.id for s in snapshots])
        return schemas.LatestTrending(
            session=schemas.CrawlSession.model_validate(session),
            trending=[self._entry(s, analyses.get(s.id)) for s in snapshots],
        )

    def history(self, hours: int = 24) -> List[schemas.SessionKeywords]:
        sessions = (
            self._completed()
            .filter(CrawlSession.created_at >= _since(hours=hours))
            .order_by(CrawlSession.created_at, CrawlSession.id)
            .all()
        )
        return [
            schemas.SessionKeywords(
                session_id=s.id,
                timestamp=s.created_at,
                keywords=[schemas.RankedKeyword(rank=t.rank, keyword=t.keyword) for t in self._ranked(s.id)],
            )
            for s in sessions
        ]

    def keyword_rank_history(self, keyword: str, hours: int = 24) -> List[schemas.RankPoint]:
        sessions = (
            self._completed()
            .filter(CrawlSession.created_at >= _since(hours=hours))
            .order_by(CrawlSession.created_at, CrawlSession.id)
            .all()
        )
        ranks = {}
        if sessions:
            rows = (
                self.db.query(TrendingSnapshot)
                .filter(TrendingSnapshot.crawl_session_id.in_([s.id for s in sessions]))
                .filter(TrendingSnapshot.keyword == keyword)
                .all()
            )
            ranks = {row.crawl_session_id: row.rank for row in rows}
        return [schemas.RankPoint(timestamp=s.created_at, rank=ranks.get(s.id)) for s in sessions]

    def records(self, page: int = 1, limit: int = 20) -> schemas.TrendingRecords:
        page = max(page, 1)
        limit = max(limit, 1)
        total = self._completed().count()
        sessions = (
            self._completed()
            .order_by(CrawlSession.created_at.desc(), CrawlSession.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return schemas.TrendingRecords(
            records=[
                schemas.SessionKeywords(
                    session_id=s.id,
                    timestamp=s.created_at,
                    keywords=[schemas.RankedKeyword(rank=t.rank, keyword=t.keyword) for t in self._ranked(s.id, limit=10)],
                )
                for s in sessions
            ],
            pagination=schemas.Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    def keyword_detail(self, session_id: int, keyword: str) -> schemas.KeywordDetail:
        snapshot = (
            self.db.query(TrendingSnapshot)
            .join(CrawlSession, TrendingSnapshot.crawl_session_id == CrawlSession.id)
            .filter(CrawlSession.id == session_id, CrawlSession.done == True)  # noqa: E712
            .filter(TrendingSnapshot.keyword == keyword)
            .first()
        )
        if snapshot is None:
            return schemas.KeywordDetail()
        analysis = self._analyses_by_snapshot([snapshot.id]).get(snapshot.id)
        entry = self._entry(snapshot, analysis)
        return schemas.KeywordDetail(trending=entry, ai_analysis=entry.ai_analysis)

    def search_keyword(self, keyword: str, limit: int = 50) -> List[schemas.KeywordHit]:
        rows = (
            self.db.query(TrendingSnapshot, CrawlSession)
            .join(CrawlSession, TrendingSnapshot.crawl_session_id == CrawlSession.id)
            .filter(CrawlSession.done == True)  # noqa: E712
            .filter(TrendingSnapshot.keyword.icontains(keyword, autoescape=True))
            .order_by(CrawlSession.created_at.desc(), TrendingSnapshot.rank)
            .limit(limit)
            .all()
        )
        analyses = self._analyses_by_snapshot([snapshot.id for snapshot, _ in rows])
        hits = []
        for snapshot, session in rows:
            analysis = analyses.get(snapshot.id)
            hits.append(schemas.KeywordHit(
                keyword=snapshot.keyword,
                rank=snapshot.rank,
                url=snapshot.url,
                session_id=session.id,
                timestamp=session.created_at,
                ai_analysis=schemas.AnalysisRecord.model_validate(analysis) if analysis else None,
            ))
        return hits

    def top_keywords(self, days: int = 7, limit: int = 20) -> List[schemas.KeywordStats]:
        count = func.count(TrendingSnapshot.id).label("count")
        rows = (
            self.db.query(
                TrendingSnapshot.keyword,
                count,
                func.avg(TrendingSnapshot.rank),
                func.min(TrendingSnapshot.rank),
                func.max(TrendingSnapshot.rank),
                func.max(CrawlSession.created_at),
            )
            .join(CrawlSession, TrendingSnapshot.crawl_session_id == CrawlSession.id)
            .filter(CrawlSession.done == True)  # noqa: E712
            .filter(CrawlSession.created_at >= _since(days=days))
            .group_by(TrendingSnapshot.keyword)
            .order_by(count.desc(), TrendingSnapshot.keyword)
            .limit(limit)
            .all()
        )
        return [
            schemas.KeywordStats(
                keyword=keyword,
                count=n,
                avg_rank=round(float(avg), 1),
                min_rank=min_rank,
                max_rank=max_rank,
                last_seen=last_seen,
            )
            for keyword, n, avg, min_rank, max_rank, last_seen in rows
        ]

    def status(self) -> Dict[str, object]:
        last = self._completed().order_by(CrawlSession.created_at.desc()).first()
        return {
            "total_sessions": self.db.query(CrawlSession).count(),
            "completed_sessions": self._completed().count(),
            "last_completed_at": last.created_at if last else None,
        }

    def rank_changes(self) -> List[schemas.RankChange]:
        """Compare the two most recent completed sessions. Positive change means the keyword climbed."""
        sessions = self._completed().order_by(CrawlSession.created_at.desc(), CrawlSession.id.desc()).limit(2).all()
        if not sessions:
            return []
        previous = {}
        if len(sessions) > 1:
            previous = {t.keyword: t.rank for t in self._ranked(sessions[1].id)}
        changes = []
        for t in self._ranked(sessions[0].id):
            prev = previous.get(t.keyword)
            changes.append(schemas.RankChange(
                keyword=t.keyword,
                rank=t.rank,
                previous_rank=prev,
                change=(prev - t.rank) if prev is not None else None,
                is_new=bool(previous) and prev is None,
            ))
        return changes
