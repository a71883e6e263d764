"""Database engine setup.

Test runs (ENV=test) without an explicit DATABASE_URL use a shared in-memory
SQLite database so logic tests need no PostgreSQL driver.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from taxledger.core.config import settings

raw_url = settings.DATABASE_URL

use_sqlite_memory = settings.ENV.lower() == "test" and (not raw_url or raw_url == "sqlite:///:memory:")

if use_sqlite_memory:
    # shared cache enables multiple connections
    raw_url = "sqlite:///file:test_db?mode=memory&cache=shared&uri=true"
    engine = create_engine(raw_url, future=True)
elif raw_url and raw_url.startswith("postgresql"):
    engine = create_engine(
        raw_url,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,  # Verify connection health before use
    )
else:
    engine = create_engine(raw_url or "sqlite:///./storage/dev.db", future=True)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
