"""
Database connection management.

Supports:
  - SQLite (local dev / testes, sem setup)
  - PostgreSQL (produção)

Connection string vem de DATABASE_URL (Settings.database_url).
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from payproof.infrastructure.db.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(url: str) -> Engine:
    """Create SQLAlchemy engine."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    # PostgreSQL
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
    )


class Database:
    """Engine + session factory de uma base."""

    def __init__(self, url: str):
        self.url = url
        self.engine = create_db_engine(url)
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def init_db(self) -> None:
        """Create all tables. Safe to call multiple times."""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database initialized: {self.url.split('@')[-1] if '@' in self.url else self.url}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


# ── Global database ──
_database: Database | None = None


def get_database() -> Database:
    """Get or create the global database (URL do Settings)."""
    global _database
    if _database is None:
        from payproof.config.settings import get_settings
        _database = Database(get_settings().database_url)
    return _database
