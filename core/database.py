# core/database.py
import logging
from typing import Generator

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from core.config import settings

logger = logging.getLogger(__name__)

LOCAL_DATABASE_URL = "sqlite:///./taskmaster.db"


def build_engine(url: str) -> Engine:
    """SQLite gets cross-thread access (the webhook runs in the threadpool)."""
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})
    # PostgreSQL: drop stale pooled connections before use
    return create_engine(url, echo=False, pool_pre_ping=True)


if not settings.DATABASE_URL:
    logger.warning("⚠️ DATABASE_URL not set, using local SQLite database.")

engine = build_engine(settings.DATABASE_URL or LOCAL_DATABASE_URL)


# ============================================================
# ✅ Schema bootstrap (startup + seed script)
# ============================================================
def create_db_and_tables(bind: Engine = None) -> None:
    # Table classes register on SQLModel.metadata at import
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(bind or engine)
        logger.info("✅ Billing tables ready.")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
        raise


# ============================================================
# ✅ Dependency: one session per request
# ============================================================
def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
