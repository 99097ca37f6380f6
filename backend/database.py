"""
Database connection for ForestLink
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql:///forestlink_db")


def _build_engine(url: str):
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        pool_size=10,           # Base connections to keep open
        max_overflow=20,        # Additional connections when busy (30 total max)
        pool_timeout=30,        # Seconds to wait for connection before error
        pool_recycle=1800,      # Recycle connections after 30 min (prevents stale)
        pool_pre_ping=True,     # Test connections before using (handles dropped connections)
    )


engine = _build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db():
    """Create any missing tables"""
    import models  # noqa: F401 - registers tables on Base.metadata
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
