"""
Database plumbing: SQLAlchemy engine, session factory and the write lock
shared by the aggregator and the archiver.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger("molexa.db")


class Base(DeclarativeBase):
    pass


class Database:
    """Owns one engine and hands out short-lived sessions."""

    def __init__(self, url: str, echo: bool = False) -> None:
        connect_args = {}
        if url.startswith("sqlite"):
            # Sessions are used from worker threads
            connect_args["check_same_thread"] = False
        self.url = url
        self.engine = create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        # Serialises summary read-modify-write and archive snapshot/delete
        self.write_lock = threading.Lock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def ping(self) -> None:
        """Raise if the backend is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def create_all(self) -> None:
        # Register the analytics tables on Base.metadata
        from molexa.models import analytics  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Analytics tables ensured on %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()
