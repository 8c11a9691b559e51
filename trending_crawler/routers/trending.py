import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from trending_crawler import schemas
from trending_crawler.db.repository import TrendingRepository

router = APIRouter()

logger = logging.getLogger("trending_router")


def get_db(request: Request):
    with request.app.state.database.session() as db:
        yield db


def get_repository(db: Session = Depends(get_db)) -> TrendingRepository:
    return TrendingRepository(db)


@router.get("/trending/latest", response_model=schemas.LatestTrending)
def latest_trending(repo: TrendingRepository = Depends(get_repository)):
    """Keywords and analyses of the most recent completed session"""
    return repo.latest_completed()


@router.get("/trending/history", response_model=List[schemas.SessionKeywords])
def trending_history(hours: int = Query(24, ge=1), repo: TrendingRepository = Depends(get_repository)):
    return repo.history(hours)


@router.get("/trending/keyword/{keyword}", response_model=List[schemas.RankPoint])
def keyword_rank_history(keyword: str, hours: int = Query(24, ge=1), repo: TrendingRepository = Depends(get_repository)):
    return repo.keyword_rank_history(keyword, hours)


@router.get("/trending/records", response_model=schemas.TrendingRecords)
def trending_records(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     repo: TrendingRepository = Depends(get_repository)):
    return repo.records(page, limit)


@router.get("/trending/keyword-detail", response_model=schemas.KeywordDetail)
def keyword_detail(session_id: int = None, keyword: str = None, repo: TrendingRepository = Depends(get_repository)):
    if session_id is None or not keyword:
        raise HTTPException(status_code=400, detail="session_id and keyword are required")
    return repo.keyword_detail(session_id, keyword)


@router.get("/trending/search", response_model=List[schemas.KeywordHit])
def search_keyword(keyword: str = Query(..., min_length=1), limit: int = Query(50, ge=1, le=500),
                   repo: TrendingRepository = Depends(get_repository)):
    return repo.search_keyword(keyword, limit)


@router.get("/trending/top", response_model=List[schemas.KeywordStats])
def top_keywords(days: int = Query(7, ge=1), limit: int = Query(20, ge=1, le=100),
                 repo: TrendingRepository = Depends(get_repository)):
    return repo.top_keywords(days, limit)


@router.get("/trending/rank-changes", response_model=List[schemas.RankChange])
def rank_changes(repo: TrendingRepository = Depends(get_repository)):
    return repo.rank_changes()


def run_manual_cycle(scheduler):
    try:
        scheduler.run_now()
    except Exception as e:
        logger.exception(f"Manual crawl cycle failed: {e}")


@router.post("/crawl", status_code=202)
def start_crawling(request: Request, background_tasks: BackgroundTasks):
    """
    Start one crawl cycle in the background.
    Returns immediately; refuses while another cycle is in flight.
    """
    scheduler = request.app.state.scheduler
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler is not running")
    if scheduler.is_running:
        raise HTTPException(status_code=409, detail="A crawl cycle is already running")
    background_tasks.add_task(run_manual_cycle, scheduler)
    return {"detail": "Crawling started in the background"}


@router.get("/status")
def get_status(request: Request, repo: TrendingRepository = Depends(get_repository)):
    """Current state of crawl sessions"""
    scheduler = request.app.state.scheduler
    status = repo.status()
    last_report = scheduler.last_report if scheduler else None
    status.update({
        "cycle_running": bool(scheduler and scheduler.is_running),
        "last_cycle_state": last_report.state.value if last_report else None,
        "last_error": str(scheduler.last_error) if scheduler and scheduler.last_error else None,
        "last_check": datetime.now(timezone.utc),
    })
    return status
