from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def default_db_url() -> str:
    return (os.environ.get("DATABASE_URL") or "sqlite:///medinv.db").strip()


def create_script_engine(db_url: str):
    engine = create_engine(
        db_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
    )
    if db_url.startswith("sqlite"):
        # Cascades on post/item deletes rely on FK enforcement.
        @event.listens_for(engine, "connect")
        def _sqlite_fk_on(dbapi_conn, _record):
            dbapi_conn.execute("PRAGMA foreign_keys=ON")

    return engine


@contextmanager
def script_session(db_url: str | None = None):
    engine = create_script_engine(db_url or default_db_url())
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
