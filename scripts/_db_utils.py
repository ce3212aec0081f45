from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def create_script_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        return create_engine(db_url, future=True, connect_args={"timeout": 30})
    return create_engine(db_url, future=True, pool_pre_ping=True, pool_recycle=1800)


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Standalone session for scripts run outside the Flask app; commits on success."""
    engine = create_script_engine(db_url)
    s: Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
