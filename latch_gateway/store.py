from __future__ import annotations

import datetime as dt
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from latch_gateway.db import build_engine, build_session_factory
from latch_gateway.http_errors import StoreUnavailableError
from latch_gateway.models import Base, StoreNode

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


def normalize_path(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    if not parts:
        raise ValueError("Store path must not be empty")
    return "/".join(parts)


def join_path(*parts: str) -> str:
    return normalize_path("/".join(parts))


def flatten(path: str, value: Any) -> dict[str, Any]:
    """
    Map a value to its leaf rows: {"a": 1, "b": {"c": 2}} at "n" ->
    {"n/a": 1, "n/b/c": 2}. Empty mappings produce no rows.
    """
    if not isinstance(value, Mapping):
        return {path: value}
    leaves: dict[str, Any] = {}
    for key, child in value.items():
        leaves.update(flatten(join_path(path, str(key)), child))
    return leaves


def _ancestors(path: str) -> list[str]:
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def _subtree(path: str):
    # substr rather than LIKE: SQLite LIKE ignores case
    prefix = path + "/"
    return or_(StoreNode.path == path, func.substr(StoreNode.path, 1, len(prefix)) == prefix)


def _delete(criteria):
    return delete(StoreNode).where(criteria).execution_options(synchronize_session=False)


class StateStore:
    """
    Typed accessor over the remote key-value tree.

    Only leaves are stored, one row per key path; a mapping written at a path becomes one
    row per field and is reassembled on read. A field write therefore touches only its own
    row, so writers of different fields never overwrite each other and writers of the same
    field are last-writer-wins. Each call is its own transaction; there is no transaction
    spanning several calls.
    """

    def __init__(self, engine: Engine, session_factory: Optional[sessionmaker[Session]] = None) -> None:
        self._engine = engine
        self._session_factory = session_factory or build_session_factory(engine)

    @contextmanager
    def _transaction(self, op: str, path: str) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("State store %s failed for %s: %s", op, path, e)
            raise StoreUnavailableError(message=f"State store {op} failed", details=str(e)) from e

    def _upsert(self, session: Session, path: str, value: Any) -> None:
        now = dt.datetime.now(dt.timezone.utc)
        insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(StoreNode).values(path=path, value=value, updated_at=now)
            stmt = stmt.on_conflict_do_update(
                index_elements=[StoreNode.path],
                set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
            )
            session.execute(stmt)
            return
        # Other backends: insert, and fall back to an update if a concurrent writer won.
        try:
            with session.begin_nested():
                session.add(StoreNode(path=path, value=value, updated_at=now))
        except IntegrityError:
            node = session.get(StoreNode, path, populate_existing=True)
            node.value = value
            node.updated_at = now
            session.flush()

    def _write(self, session: Session, path: str, value: Any) -> None:
        # A leaf can't also be an interior node: drop leaves above and everything below.
        session.execute(_delete(_subtree(path)))
        ancestors = _ancestors(path)
        if ancestors:
            session.execute(_delete(StoreNode.path.in_(ancestors)))
        for leaf_path, leaf_value in flatten(path, value).items():
            self._upsert(session, leaf_path, leaf_value)

    def get(self, path: str) -> Any:
        key = normalize_path(path)
        with self._transaction("get", key) as session:
            rows = session.execute(select(StoreNode.path, StoreNode.value).where(_subtree(key))).all()
        if not rows:
            return None
        tree: dict[str, Any] = {}
        for row_path, value in rows:
            if row_path == key:
                return value
            cur = tree
            *parents, leaf = row_path[len(key) + 1:].split("/")
            for part in parents:
                cur = cur.setdefault(part, {})
            cur[leaf] = value
        return tree

    def set(self, path: str, value: Any) -> None:
        """Replace the whole value at `path`."""
        key = normalize_path(path)
        with self._transaction("set", key) as session:
            self._write(session, key, value)

    def update(self, path: str, fields: Mapping[str, Any]) -> None:
        """Field-level merge: only the given keys change, other keys are kept."""
        key = normalize_path(path)
        with self._transaction("update", key) as session:
            for field, value in fields.items():
                self._write(session, join_path(key, str(field)), value)

    def remove(self, path: str) -> None:
        key = normalize_path(path)
        with self._transaction("remove", key) as session:
            session.execute(_delete(_subtree(key)))

    def dispose(self) -> None:
        self._engine.dispose()


def init_store(db_url: str) -> StateStore:
    """Connect to the store and make sure the node table exists."""
    engine = build_engine(db_url)
    try:
        # Minimal bootstrap: create tables if they do not exist.
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        raise StoreUnavailableError(message="State store initialization failed", details=str(e)) from e
    logger.info("State store ready (%s)", engine.url.render_as_string(hide_password=True))
    return StateStore(engine)
