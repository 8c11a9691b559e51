import pytest

from trending_crawler.db.models import AnalysisRecord, CrawlSession, EnrichmentSnapshot, TrendingSnapshot
from trending_crawler.errors import CompletionError, EmptyResultError, FetchError
from trending_crawler.services.pipeline import CycleState, TrendingPipeline
from trending_crawler.utils.crawler import KeywordCollector
from trending_crawler.utils.forum import ForumEnricher

from conftest import FRONT_PAGE_URL, FakeFetcher, analysis_block, detail_html, front_page_html, post_url, search_html, search_url

KEYWORDS = ["가수", "배우", "선수"]


class FakeAnalyzer:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.batches = []

    def analyze(self, terms):
        self.batches.append(list(terms))
        if self.error:
            raise self.error
        return self.text


def site_pages(keywords=KEYWORDS):
    pages = {FRONT_PAGE_URL: front_page_html(keywords)}
    # only the first keyword has a matching thread; the second has none
    pages[search_url(keywords[0])] = search_html([(123456789, f"{keywords[0]} 근황")])
    pages[post_url(123456789)] = detail_html(title=f"{keywords[0]} 근황")
    for keyword in keywords[1:]:
        pages[search_url(keyword)] = search_html([])
    return pages


def build_pipeline(database, analyzer, pages=None, top_n=10, enrich_workers=1):
    fetcher = FakeFetcher(site_pages() if pages is None else pages)
    return TrendingPipeline(
        database,
        collector=KeywordCollector(fetcher),
        enricher=ForumEnricher(fetcher),
        analyzer=analyzer,
        top_n=top_n,
        enrich_workers=enrich_workers,
    )


def full_analysis(keywords=KEYWORDS):
    return "".join(analysis_block(rank, keyword) for rank, keyword in enumerate(keywords, start=1))


def test_full_cycle_persists_linked_records(database, db_session):
    report = build_pipeline(database, FakeAnalyzer(full_analysis())).run_cycle()

    assert report.state == CycleState.COMPLETED
    assert (report.keywords, report.enriched, report.analyzed) == (3, 1, 3)

    session = db_session.query(CrawlSession).one()
    assert session.done is True
    snapshots = db_session.query(TrendingSnapshot).order_by(TrendingSnapshot.rank).all()
    assert [(s.rank, s.keyword) for s in snapshots] == list(enumerate(KEYWORDS, start=1))
    assert all(s.crawl_session_id == session.id for s in snapshots)

    enrichment = db_session.query(EnrichmentSnapshot).one()
    assert enrichment.trending_snapshot_id == snapshots[0].id
    assert enrichment.post_detail["title"] == "가수 근황"
    assert enrichment.post_detail["comments"][0]["content"] == "정말 놀랍다"

    analyses = db_session.query(AnalysisRecord).all()
    by_snapshot = {a.trending_snapshot_id: a for a in analyses}
    assert set(by_snapshot) == {s.id for s in snapshots}
    for snapshot in snapshots:
        assert by_snapshot[snapshot.id].keyword == snapshot.keyword
    assert by_snapshot[snapshots[0].id].related_info["category"] == "사건"


def test_terms_without_thread_still_reach_analysis(database):
    analyzer = FakeAnalyzer(full_analysis())
    build_pipeline(database, analyzer).run_cycle()
    sent = analyzer.batches[0]
    assert [t.rank for t in sent] == [1, 2, 3]
    assert sent[0].reason is not None
    assert sent[1].reason is None and sent[2].reason is None


def test_top_n_truncates_keywords(database, db_session):
    build_pipeline(database, FakeAnalyzer(full_analysis()), top_n=2).run_cycle()
    assert [s.rank for s in db_session.query(TrendingSnapshot).order_by(TrendingSnapshot.rank)] == [1, 2]
    # the rank 3 block has no snapshot to attach to
    assert db_session.query(AnalysisRecord).count() == 2


def test_analysis_failure_leaves_session_incomplete(database, db_session):
    pipeline = build_pipeline(database, FakeAnalyzer(error=CompletionError("quota exceeded")))
    with pytest.raises(CompletionError):
        pipeline.run_cycle()

    session = db_session.query(CrawlSession).one()
    assert session.done is False
    assert db_session.query(TrendingSnapshot).count() == 3
    assert db_session.query(AnalysisRecord).count() == 0


def test_collection_failure_is_fatal(database, db_session):
    pipeline = build_pipeline(database, FakeAnalyzer(full_analysis()), pages={})
    with pytest.raises(FetchError):
        pipeline.run_cycle()
    session = db_session.query(CrawlSession).one()
    assert session.done is False
    assert db_session.query(TrendingSnapshot).count() == 0


def test_empty_front_page_is_fatal(database, db_session):
    pipeline = build_pipeline(database, FakeAnalyzer(full_analysis()), pages={FRONT_PAGE_URL: front_page_html([])})
    with pytest.raises(EmptyResultError):
        pipeline.run_cycle()
    assert db_session.query(CrawlSession).one().done is False
    assert db_session.query(TrendingSnapshot).count() == 0


def test_partial_analysis_still_completes(database, db_session):
    text = analysis_block(3, "선수")
    report = build_pipeline(database, FakeAnalyzer(text)).run_cycle()
    assert report.state == CycleState.COMPLETED
    assert report.analyzed == 1
    record = db_session.query(AnalysisRecord).one()
    snapshot = db_session.get(TrendingSnapshot, record.trending_snapshot_id)
    assert snapshot.rank == 3


def test_empty_completion_completes_without_analyses(database, db_session):
    report = build_pipeline(database, FakeAnalyzer("")).run_cycle()
    assert report.state == CycleState.COMPLETED
    assert db_session.query(AnalysisRecord).count() == 0
    assert db_session.query(CrawlSession).one().done is True


def test_parallel_enrichment_preserves_rank_order(database, db_session):
    keywords = [f"키워드{i}" for i in range(1, 9)]
    pages = site_pages(keywords)
    analyzer = FakeAnalyzer(full_analysis(keywords))
    build_pipeline(database, analyzer, pages=pages, enrich_workers=4).run_cycle()

    assert [t.keyword for t in analyzer.batches[0]] == keywords
    snapshots = db_session.query(TrendingSnapshot).order_by(TrendingSnapshot.id).all()
    assert [(s.rank, s.keyword) for s in snapshots] == list(enumerate(keywords, start=1))
    enrichment = db_session.query(EnrichmentSnapshot).one()
    assert enrichment.trending_snapshot_id == snapshots[0].id


def test_rerun_after_failed_cycle_keeps_completed_sessions_intact(database, db_session):
    build_pipeline(database, FakeAnalyzer(full_analysis())).run_cycle()
    with pytest.raises(CompletionError):
        build_pipeline(database, FakeAnalyzer(error=CompletionError("down"))).run_cycle()
    build_pipeline(database, FakeAnalyzer(full_analysis())).run_cycle()

    sessions = db_session.query(CrawlSession).order_by(CrawlSession.id).all()
    assert [s.done for s in sessions] == [True, False, True]
    for session in sessions:
        ranks = sorted(s.rank for s in session.snapshots)
        assert ranks == [1, 2, 3]
    first_ids = {s.id for s in sessions[0].snapshots}
    assert db_session.query(AnalysisRecord).filter(AnalysisRecord.trending_snapshot_id.in_(first_ids)).count() == 3


def test_every_child_row_belongs_to_its_cycle_session(database, db_session):
    for _ in range(2):
        build_pipeline(database, FakeAnalyzer(full_analysis())).run_cycle()
    for session in db_session.query(CrawlSession).filter(CrawlSession.done == True):  # noqa: E712
        ranks = sorted(s.rank for s in session.snapshots)
        assert ranks == list(range(1, len(ranks) + 1))
        for snapshot in session.snapshots:
            if snapshot.analysis is not None:
                assert snapshot.analysis.trending_snapshot.crawl_session_id == session.id
            if snapshot.enrichment is not None:
                assert snapshot.enrichment.trending_snapshot.crawl_session_id == session.id
