import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from trending_crawler.db.repository import TrendingRepository
from trending_crawler.schemas import TrendingKeyword, TrendingWithReason
from trending_crawler.services.analysis import AnalysisClient
from trending_crawler.services.parser import parse_analysis
from trending_crawler.utils.crawler import KeywordCollector
from trending_crawler.utils.fetcher import PageFetcher
from trending_crawler.utils.forum import ForumEnricher, Found, Failed

logger = logging.getLogger("pipeline")


class CycleState(str, Enum):
    CREATED = "created"
    COLLECTING = "collecting"
    ENRICHING = "enriching"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class CycleReport:
    session_id: Optional[int] = None
    state: CycleState = CycleState.CREATED
    failed_in: Optional[CycleState] = None
    keywords: int = 0
    enriched: int = 0
    enrich_errors: int = 0
    analyzed: int = 0
    error: Optional[Exception] = None


class TrendingPipeline:
    """
    Runs one crawl cycle: collect, enrich, analyze, persisting as it goes.

    The session row is written first with done=False and only flipped to
    done once every later write of the cycle succeeded. Any fatal error
    leaves the session incomplete and is re-raised to the caller.
    """

    def __init__(self, database, collector: KeywordCollector, enricher: ForumEnricher, analyzer: AnalysisClient,
                 top_n: int = 10, enrich_workers: int = 1, closeables: Sequence[Any] = ()):
        self.database = database
        self.collector = collector
        self.enricher = enricher
        self.analyzer = analyzer
        self.top_n = top_n
        self.enrich_workers = max(1, enrich_workers)
        self._closeables = list(closeables)

    @classmethod
    def from_config(cls, config: Dict[str, Any], env: Dict[str, Any], database) -> "TrendingPipeline":
        fetcher = PageFetcher(env["proxy_url"], max_timeout_ms=config["proxy_timeout_ms"])
        analyzer = AnalysisClient(
            api_key=env["openai_api_key"],
            model=env["llm_model"],
            base_url=env["llm_base_url"],
            timeout=env["llm_timeout"],
        )
        return cls(
            database,
            collector=KeywordCollector(fetcher, config["wiki_base_url"], config["wiki_front_page"]),
            enricher=ForumEnricher(fetcher, config["forum_base_url"], config["forum_channel"], config["min_post_id"]),
            analyzer=analyzer,
            top_n=config["top_n"],
            enrich_workers=config["enrich_workers"],
            closeables=[fetcher, analyzer],
        )

    def open(self):
        for resource in self._closeables:
            resource.open()
        return self

    def close(self):
        for resource in self._closeables:
            resource.close()

    def enrich_all(self, terms: Sequence[TrendingKeyword]) -> Tuple[List[TrendingWithReason], int]:
        """Look up every term in input order; also returns how many lookups errored"""
        keywords = [t.keyword for t in terms]
        if self.enrich_workers == 1:
            outcomes = [self.enricher.lookup(k) for k in keywords]
        else:
            with ThreadPoolExecutor(max_workers=self.enrich_workers) as executor:
                outcomes = list(executor.map(self.enricher.lookup, keywords))

        return [
            TrendingWithReason(**t.model_dump(), reason=o.post if isinstance(o, Found) else None)
            for t, o in zip(terms, outcomes)
        ], sum(1 for o in outcomes if isinstance(o, Failed))

    def _enter(self, report: CycleReport, state: CycleState):
        report.state = state
        logger.info(f"[Pipeline] Session {report.session_id}: {state.value}")

    def run_cycle(self) -> CycleReport:
        report = CycleReport()
        with self.database.session() as db:
            repo = TrendingRepository(db)
            report.session_id = repo.create_session()
            logger.info(f"[Pipeline] Session {report.session_id}: {report.state.value}")
            try:
                self._enter(report, CycleState.COLLECTING)
                terms = self.collector.collect()[: self.top_n]
                report.keywords = len(terms)
                saved = repo.save_trending_snapshots(report.session_id, terms)

                self._enter(report, CycleState.ENRICHING)
                enriched, report.enrich_errors = self.enrich_all(terms)
                report.enriched = repo.save_enrichment_snapshots(enriched, saved)

                self._enter(report, CycleState.ANALYZING)
                raw = self.analyzer.analyze(enriched)
                analyses = parse_analysis(raw, enriched)
                report.analyzed = repo.save_analysis_records(analyses, saved)

                repo.mark_session_done(report.session_id)
                self._enter(report, CycleState.COMPLETED)
            except Exception as e:
                report.failed_in = report.state
                report.state = CycleState.FAILED
                report.error = e
                logger.error(f"[Pipeline] Session {report.session_id} failed while {report.failed_in.value}: {e}")
                raise

        logger.info(
            f"[Pipeline] Session {report.session_id} done: {report.keywords} keywords, "
            f"{report.enriched} enriched ({report.enrich_errors} errors), {report.analyzed} analyzed"
        )
        return report
