# db/models.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class CrawlSession(Base):
    __tablename__ = "crawl_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    done = Column(Boolean, nullable=False, default=False, index=True)  # only mutable column

    snapshots = relationship("TrendingSnapshot", back_populates="session", order_by="TrendingSnapshot.rank")


class TrendingSnapshot(Base):
    __tablename__ = "trending_snapshots"
    __table_args__ = (UniqueConstraint("crawl_session_id", "rank", name="uq_trending_session_rank"),)

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    crawl_session_id = Column(Integer, ForeignKey("crawl_sessions.id"), nullable=False, index=True)
    rank = Column(Integer, nullable=False, index=True)
    keyword = Column(String, nullable=False, index=True)
    url = Column(String, nullable=False)

    session = relationship("CrawlSession", back_populates="snapshots")
    enrichment = relationship("EnrichmentSnapshot", back_populates="trending_snapshot", uselist=False)
    analysis = relationship("AnalysisRecord", back_populates="trending_snapshot", uselist=False)


class EnrichmentSnapshot(Base):
    __tablename__ = "enrichment_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    trending_snapshot_id = Column(Integer, ForeignKey("trending_snapshots.id"), nullable=False, index=True)
    post_detail = Column(JSON, nullable=False)

    trending_snapshot = relationship("TrendingSnapshot", back_populates="enrichment")


class AnalysisRecord(Base):
    __tablename__ = "analysis_records"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    trending_snapshot_id = Column(Integer, ForeignKey("trending_snapshots.id"), nullable=False, index=True)
    keyword = Column(String, nullable=False, index=True)
    summary = Column(Text, nullable=False, default="")
    reason = Column(Text, nullable=False, default="")
    public_opinion = Column(Text, nullable=False, default="")
    related_info = Column(JSON, nullable=False, default=dict)
    related_links = Column(JSON, nullable=False, default=list)
    related_images = Column(JSON, nullable=False, default=list)

    trending_snapshot = relationship("TrendingSnapshot", back_populates="analysis")
