"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Dialect-aware INSERT ... ON CONFLICT DO NOTHING
"""

import logging
from typing import Type, TypeVar, Iterable
from sqlalchemy.orm import Session
from sqlalchemy.dialects import postgresql, sqlite

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    return db.get_bind().dialect.name == 'postgresql'


def is_sqlite(db: Session) -> bool:
    """Check if the database is SQLite"""
    return db.get_bind().dialect.name == 'sqlite'


def insert_ignore(db: Session, model: Type[T], values: dict, conflict_columns: Iterable[str]) -> int:
    """
    INSERT a row unless one already exists for conflict_columns.

    Atomic on both PostgreSQL and SQLite: concurrent inserters never see an
    IntegrityError, one of them simply inserts nothing.

    Returns:
        Number of rows inserted (0 or 1)
    """
    if is_postgres(db):
        stmt = postgresql.insert(model).values(**values)
    elif is_sqlite(db):
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"insert_ignore not supported for {db.get_bind().dialect.name}")

    stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
    result = db.execute(stmt)
    return result.rowcount or 0
