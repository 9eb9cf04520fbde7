from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from propmarket.config import database_url


def _connect_args(url: str) -> dict:
    # FastAPI runs sync handlers in a threadpool; sqlite connections must be shareable.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


ENGINE = create_engine(database_url(), pool_pre_ping=True, future=True, connect_args=_connect_args(database_url()))
SessionLocal = sessionmaker(bind=ENGINE, class_=Session, expire_on_commit=False, autoflush=False, autocommit=False)


@contextmanager
def session_scope(factory: sessionmaker = SessionLocal):
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
