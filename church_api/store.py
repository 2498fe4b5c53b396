"""
Namespaced key-value content store, backed by SQLAlchemy or memory.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Optional, Protocol

from sqlalchemy import JSON, Column, Float, Integer, String, create_engine, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from church_api.errors import ContentStoreError

logger = logging.getLogger(__name__)


class ContentStore(Protocol):
    """Operations the API needs from the content database."""

    def get(self, key: str) -> Optional[dict]:
        ...

    def set(self, key: str, value: dict) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def get_by_prefix(self, prefix: str) -> list[dict]:
        ...

    def merge(self, key: str, changes: dict) -> Optional[dict]:
        ...


def prefix_upper_bound(prefix: str) -> Optional[str]:
    """
    Return the smallest string greater than every string starting with `prefix`.

    Returns None when no such bound exists (empty prefix, or a prefix made only
    of the highest code point), in which case the range is open-ended.
    """
    chars = list(prefix)
    while chars:
        last = ord(chars[-1])
        if last < 0x10FFFF:
            chars[-1] = chr(last + 1)
            return "".join(chars)
        chars.pop()
    return None


class InMemoryContentStore:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.items: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[dict]:
        value = self.items.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            self.items[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self.items.pop(key, None)

    def get_by_prefix(self, prefix: str) -> list[dict]:
        with self._lock:
            return [
                copy.deepcopy(value)
                for key, value in self.items.items()
                if key.startswith(prefix)
            ]

    def merge(self, key: str, changes: dict) -> Optional[dict]:
        with self._lock:
            existing = self.items.get(key)
            if existing is None:
                return None
            merged = {**existing, **copy.deepcopy(changes)}
            self.items[key] = merged
            return copy.deepcopy(merged)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.items.clear()


Base = declarative_base()


class ContentRow(Base):
    __tablename__ = "kv_store"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(Float, nullable=False)


_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _upsert_statement(insert, key: str, value: dict):
    """INSERT ... ON CONFLICT (key) DO UPDATE, replacing the stored value."""
    stmt = insert(ContentRow).values(
        key=key, value=value, version=1, updated_at=time.time()
    )
    return stmt.on_conflict_do_update(
        index_elements=[ContentRow.key],
        set_={
            "value": stmt.excluded.value,
            "version": ContentRow.version + 1,
            "updated_at": stmt.excluded.updated_at,
        },
    )


class SqlContentStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlContentStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def get(self, key: str) -> Optional[dict]:
        try:
            with self.Session() as session:
                row = session.get(ContentRow, key)
                return row.value if row else None
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to read {key}: {exc}") from exc

    def set(self, key: str, value: dict) -> None:
        try:
            with self.Session() as session:
                insert = _UPSERT_INSERTS.get(self.engine.dialect.name)
                if insert is not None:
                    session.execute(_upsert_statement(insert, key, value))
                else:
                    self._set_without_upsert(session, key, value)
                session.commit()
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to write {key}: {exc}") from exc

    def _set_without_upsert(self, session: Session, key: str, value: dict) -> None:
        # A concurrent first write can win the insert; retry as an update.
        row = session.get(ContentRow, key, with_for_update=True)
        if row is None:
            try:
                with session.begin_nested():
                    session.add(
                        ContentRow(
                            key=key, value=value, version=1, updated_at=time.time()
                        )
                    )
                return
            except IntegrityError:
                row = session.get(ContentRow, key, with_for_update=True)
        row.value = value
        row.version += 1
        row.updated_at = time.time()

    def delete(self, key: str) -> None:
        try:
            with self.Session() as session:
                row = session.get(ContentRow, key)
                if row:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to delete {key}: {exc}") from exc

    def get_by_prefix(self, prefix: str) -> list[dict]:
        # Range over the primary key index rather than LIKE, which most
        # engines cannot serve from a btree without a collation hint.
        stmt = select(ContentRow.value).where(ContentRow.key >= prefix)
        upper = prefix_upper_bound(prefix)
        if upper is not None:
            stmt = stmt.where(ContentRow.key < upper)
        try:
            with self.Session() as session:
                return list(session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to scan {prefix}: {exc}") from exc

    def merge(self, key: str, changes: dict) -> Optional[dict]:
        try:
            with self.Session() as session:
                row = session.get(ContentRow, key, with_for_update=True)
                if not row:
                    return None
                # Assign a new dict so the JSON column is flagged dirty.
                merged = {**row.value, **changes}
                row.value = merged
                row.version += 1
                row.updated_at = time.time()
                session.commit()
                logger.debug("Merged %s at version %s", key, row.version)
                return merged
        except SQLAlchemyError as exc:
            raise ContentStoreError(f"Failed to update {key}: {exc}") from exc
