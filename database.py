"""
Database setup for the Storefront API.

Provides the SQLAlchemy engine and session factory, the FastAPI session
dependency, a transaction helper, and two small row helpers used across the
services (create_document / get_documents).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

import config

logger = logging.getLogger(__name__)

Base = declarative_base()


def make_engine(url: str, timeout: int = config.DB_TIMEOUT_SECONDS) -> Engine:
    """Create an engine with bounded waits for the given store URL."""
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
    elif url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
    else:
        connect_args = {}

    eng = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    if eng.dialect.name == "sqlite":
        # SQLite leaves foreign keys off unless asked on every connection
        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


engine = make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Optional[Engine] = None) -> None:
    # models registers the tables on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables initialized")


def table_names(bind: Optional[Engine] = None) -> List[str]:
    return inspect(bind or engine).get_table_names()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done in the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def create_document(db: Session, model: Type[Any], data: Dict[str, Any]) -> Any:
    """Add a row built from data and flush it so generated ids are available."""
    row = model(**data)
    db.add(row)
    db.flush()
    return row


def get_documents(db: Session, model: Type[Any], filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, order_by: Any = None) -> List[Any]:
    query = db.query(model)
    if filter_dict:
        query = query.filter_by(**filter_dict)
    if order_by is not None:
        query = query.order_by(*order_by) if isinstance(order_by, (list, tuple)) else query.order_by(order_by)
    if limit:
        query = query.limit(limit)
    return query.all()


def to_dict(row: Any) -> Dict[str, Any]:
    if row is None:
        return row
    return {column.key: getattr(row, column.key) for column in inspect(row).mapper.column_attrs}
