#!/usr/bin/env python3
"""
store.py

Graph-store boundary for code_vec.

The rest of the package talks to the graph database through exactly two
calls, described by :class:`GraphExecutor`:

* ``execute_query(query) -> rows``
* ``execute_batch(query, params_list) -> None`` (one prepared statement,
  many parameter sets)

Rows may come back keyed by column name or as positional sequences;
:func:`read_field` is the only place that shape is interpreted.

:class:`KuzuGraphStore` implements the protocol on top of the embedded
Kùzu database, including the ``VECTOR`` extension that provides
``CREATE_VECTOR_INDEX`` / ``QUERY_VECTOR_INDEX``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from code_vec.config import (
    DEFAULT_DIMENSION,
    EMBEDDING_TABLE,
    NODE_TABLE,
    RELATION_TABLE,
)
from code_vec.errors import classify_store_error

logger = logging.getLogger(__name__)

Row = Any

# ---------------------------------------------------------------------------
# Executor protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class GraphExecutor(Protocol):
    """The two capabilities the core needs from a graph database."""

    def execute_query(self, query: str) -> List[Row]:
        ...

    def execute_batch(self, query: str, params_list: Sequence[Dict[str, Any]]) -> None:
        ...


# ---------------------------------------------------------------------------
# Row reading
# ---------------------------------------------------------------------------


def read_field(row: Row, name: str, position: int, default: Any = None) -> Any:
    """
    Read one column from a result row.

    Tries the column *name* first (mapping key or attribute), then the
    zero-based *position*.  ``None`` at both places yields *default*.

    :param row: A dict-like or sequence-like row.
    :param name: Column alias used in the ``RETURN`` clause.
    :param position: Column position in the ``RETURN`` clause.
    :param default: Value returned when neither lookup finds a value.
    """
    value = _lookup(row, name)
    if value is None:
        value = _lookup(row, position)
    return default if value is None else value


def _lookup(row: Row, key: str | int) -> Any:
    if isinstance(row, Mapping):
        return row.get(key)
    if isinstance(key, int):
        if isinstance(row, Sequence) and not isinstance(row, (str, bytes)):
            return row[key] if -len(row) <= key < len(row) else None
        return None
    return getattr(row, key, None)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def schema_statements(dimension: int = DEFAULT_DIMENSION) -> List[str]:
    """
    DDL for the three tables code_vec relies on.

    ``CodeEmbedding`` is keyed by an auto-increment id so that repeated
    pipeline runs append rather than collide on ``nodeId``.
    """
    return [
        f"""
        CREATE NODE TABLE IF NOT EXISTS {NODE_TABLE}(
            id STRING,
            label STRING,
            name STRING,
            filePath STRING,
            content STRING,
            startLine INT64,
            endLine INT64,
            PRIMARY KEY (id)
        )
        """,
        f"""
        CREATE REL TABLE IF NOT EXISTS {RELATION_TABLE}(
            FROM {NODE_TABLE} TO {NODE_TABLE},
            type STRING
        )
        """,
        f"""
        CREATE NODE TABLE IF NOT EXISTS {EMBEDDING_TABLE}(
            id SERIAL,
            nodeId STRING,
            embedding FLOAT[{int(dimension)}],
            PRIMARY KEY (id)
        )
        """,
    ]


# ---------------------------------------------------------------------------
# KuzuGraphStore
# ---------------------------------------------------------------------------


class KuzuGraphStore:
    """
    :class:`GraphExecutor` backed by an embedded Kùzu database.

    Example::

        with KuzuGraphStore(".codevec/graph.kuzu") as store:
            store.ensure_schema()
            rows = store.execute_query("MATCH (n:CodeNode) RETURN count(n) AS n")

    :param db_path: Database directory/file (created if absent).
    :param dimension: Width of the ``CodeEmbedding.embedding`` column.
    :param read_only: Open the database read-only.
    :param load_vector_extension: Install and load Kùzu's ``VECTOR``
                                  extension on connect.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        dimension: int = DEFAULT_DIMENSION,
        read_only: bool = False,
        load_vector_extension: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self.read_only = read_only
        self.load_vector_extension = load_vector_extension
        self._db = None
        self._con = None

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @property
    def con(self):
        """Lazy Kùzu connection (created on first access)."""
        if self._con is None:
            import kuzu

            if not self.read_only:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = kuzu.Database(str(self.db_path), read_only=self.read_only)
            self._con = kuzu.Connection(self._db)
            if self.load_vector_extension:
                self._load_vector_extension()
            logger.debug("Opened Kùzu database at %s", self.db_path)
        return self._con

    def _load_vector_extension(self) -> None:
        for stmt in ("INSTALL VECTOR", "LOAD EXTENSION VECTOR"):
            try:
                self._con.execute(stmt)
            except Exception as exc:
                # Already installed/loaded on this database
                if "already" not in str(exc).lower():
                    raise classify_store_error(exc, stmt) from exc

    def close(self) -> None:
        """Close the connection and database handles."""
        if self._con is not None:
            self._con.close()
            self._con = None
        if self._db is not None:
            self._db.close()
            self._db = None

    def __enter__(self) -> "KuzuGraphStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # GraphExecutor
    # ------------------------------------------------------------------

    def execute_query(self, query: str) -> List[Dict[str, Any]]:
        """
        Run *query* and return its rows as dicts keyed by column name.

        :raises UpstreamQueryError: (or a subclass) on any engine failure.
        """
        try:
            result = self.con.execute(query)
            return _collect_rows(result)
        except Exception as exc:
            raise classify_store_error(exc, query) from exc

    def execute_batch(self, query: str, params_list: Sequence[Dict[str, Any]]) -> None:
        """
        Prepare *query* once and execute it for every parameter dict.

        :raises UpstreamQueryError: (or a subclass) on any engine failure.
        """
        if not params_list:
            return
        try:
            stmt = self.con.prepare(query)
            for params in params_list:
                result = self.con.execute(stmt, dict(params))
                _close_result(result)
        except Exception as exc:
            raise classify_store_error(exc, query) from exc

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create ``CodeNode``, ``CodeRelation`` and ``CodeEmbedding`` if absent."""
        for stmt in schema_statements(self.dimension):
            self.execute_query(stmt)

    def __repr__(self) -> str:
        return f"KuzuGraphStore(db_path={self.db_path!r}, dimension={self.dimension})"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _collect_rows(result) -> List[Dict[str, Any]]:
    """Drain a Kùzu ``QueryResult`` (or list of them) into dict rows."""
    if isinstance(result, list):
        rows: List[Dict[str, Any]] = []
        for r in result:
            rows.extend(_collect_rows(r))
        return rows
    try:
        columns = result.get_column_names()
        rows = []
        while result.has_next():
            rows.append(dict(zip(columns, result.get_next())))
        return rows
    finally:
        _close_result(result)


def _close_result(result: Optional[object]) -> None:
    if isinstance(result, list):
        for r in result:
            _close_result(r)
        return
    close = getattr(result, "close", None)
    if callable(close):
        close()
