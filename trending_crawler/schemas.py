import datetime
from typing import List, Optional

import pydantic


class TrendingKeyword(pydantic.BaseModel):
    rank: int
    keyword: str
    url: str


class ForumComment(pydantic.BaseModel):
    author: str
    content: str
    created_at: str = ""


class ForumPost(pydantic.BaseModel):
    """A row of the forum search result list."""
    id: str
    title: str
    url: str
    badge: str = ""
    author: str = ""
    created_at: str = ""
    view_count: int = 0
    comment_count: int = 0


class PostDetail(ForumPost):
    content: str = ""
    comments: List[ForumComment] = []


class TrendingWithReason(TrendingKeyword):
    reason: Optional[PostDetail] = None


class RelatedInfo(pydantic.BaseModel):
    category: str = ""
    related_people: str = ""
    occurred_at: str = ""
    related_keywords: str = ""


class RelatedLink(pydantic.BaseModel):
    title: str
    url: str
    description: str = ""


class RelatedImage(pydantic.BaseModel):
    description: str
    url: str


class AnalysisResult(pydantic.BaseModel):
    rank: int
    keyword: str
    summary: str = ""
    reason: str = ""
    public_opinion: str = ""
    related_info: RelatedInfo = RelatedInfo()
    related_links: List[RelatedLink] = []
    related_images: List[RelatedImage] = []


class SavedSnapshot(pydantic.BaseModel):
    rank: int
    keyword: str
    snapshot_id: int


# API responses

class CrawlSession(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(from_attributes=True)

    id: int
    created_at: datetime.datetime
    done: bool


class AnalysisRecord(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(from_attributes=True)

    id: int
    trending_snapshot_id: int
    keyword: str
    summary: str
    reason: str
    public_opinion: str
    related_info: RelatedInfo
    related_links: List[RelatedLink]
    related_images: List[RelatedImage]


class TrendingEntry(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(from_attributes=True)

    id: int
    rank: int
    keyword: str
    url: str
    ai_analysis: Optional[AnalysisRecord] = None


class LatestTrending(pydantic.BaseModel):
    session: Optional[CrawlSession] = None
    trending: List[TrendingEntry] = []


class RankedKeyword(pydantic.BaseModel):
    rank: int
    keyword: str


class SessionKeywords(pydantic.BaseModel):
    session_id: int
    timestamp: datetime.datetime
    keywords: List[RankedKeyword]


class RankPoint(pydantic.BaseModel):
    timestamp: datetime.datetime
    rank: Optional[int] = None


class Pagination(pydantic.BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class TrendingRecords(pydantic.BaseModel):
    records: List[SessionKeywords]
    pagination: Pagination


class KeywordDetail(pydantic.BaseModel):
    trending: Optional[TrendingEntry] = None
    ai_analysis: Optional[AnalysisRecord] = None


class KeywordHit(pydantic.BaseModel):
    keyword: str
    rank: int
    url: str
    session_id: int
    timestamp: Optional[datetime.datetime] = None
    ai_analysis: Optional[AnalysisRecord] = None


class KeywordStats(pydantic.BaseModel):
    keyword: str
    count: int
    avg_rank: float
    min_rank: int
    max_rank: int
    last_seen: Optional[datetime.datetime] = None


class RankChange(pydantic.BaseModel):
    keyword: str
    rank: int
    previous_rank: Optional[int] = None
    change: Optional[int] = None
    is_new: bool = False
