# db/database.py
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger("database")


class Database:
    """
    Owns the SQLAlchemy engine and session factory for one process.

    Constructed explicitly and passed to whoever needs it; nothing here is
    a module-level singleton.
    """

    def __init__(self, url: str):
        self.url = url
        self.engine = None
        self.SessionLocal = None

    def open(self):
        if self.engine is not None:
            return self
        kwargs = {}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.url or self.url in ("sqlite://", "sqlite:///"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.url, **kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info(f"[DB] Connected ({self.engine.url.render_as_string(hide_password=True)})")
        return self

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("[DB] Connection closed")
        self.engine = None
        self.SessionLocal = None

    def init_db(self):
        """Create tables if they don't exist"""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self):
        if self.SessionLocal is None:
            raise RuntimeError("Database is not open. Call open() first.")
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
