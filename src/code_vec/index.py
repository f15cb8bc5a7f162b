#!/usr/bin/env python3
"""
index.py

Embedding table writer and vector index lifecycle.

Embeddings live in their own ``CodeEmbedding`` table rather than on
``CodeNode``: writing a vector onto a node would rewrite its (large)
``content`` column as well.  The table is append-only; the nearest-neighbour
index over it is delegated to the graph engine's
``CREATE_VECTOR_INDEX`` primitive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

from code_vec.config import (
    DEFAULT_DIMENSION,
    EMBEDDING_TABLE,
    VECTOR_FIELD,
    VECTOR_INDEX_NAME,
    VECTOR_METRIC,
)
from code_vec.errors import (
    EmbeddingDimensionMismatchError,
    IndexAlreadyExistsError,
    IndexMissingError,
    classify_store_error,
)
from code_vec.store import GraphExecutor, read_field

logger = logging.getLogger(__name__)

INSERT_EMBEDDING = (
    f"CREATE (e:{EMBEDDING_TABLE} {{nodeId: $nodeId, {VECTOR_FIELD}: $embedding}})"
)

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingRecord:
    """
    One row of the embedding table.

    :param node_id: ``CodeNode.id`` the vector belongs to (not unique).
    :param embedding: Vector of length equal to the model dimension.
    """

    node_id: str
    embedding: List[float]


class EmbeddingWriter:
    """
    Appends :class:`EmbeddingRecord` batches to ``CodeEmbedding``.

    Every batch goes through one parameterised ``CREATE`` statement
    executed with a list of parameter sets, so the store compiles it once
    per batch.

    :param executor: Graph store boundary.
    :param dimension: Required vector length.
    :param table: Embedding table name.
    """

    def __init__(
        self,
        executor: GraphExecutor,
        *,
        dimension: int = DEFAULT_DIMENSION,
        table: str = EMBEDDING_TABLE,
    ) -> None:
        self.executor = executor
        self.dimension = dimension
        self.table = table
        self._insert = (
            INSERT_EMBEDDING
            if table == EMBEDDING_TABLE
            else f"CREATE (e:{table} {{nodeId: $nodeId, {VECTOR_FIELD}: $embedding}})"
        )

    def write_batch(self, records: Sequence[EmbeddingRecord]) -> int:
        """
        Insert *records*; no duplicate check on ``node_id``.

        :return: Number of records written.
        :raises EmbeddingDimensionMismatchError: Before anything is written,
            if any vector has the wrong length.
        """
        if not records:
            return 0
        for rec in records:
            if len(rec.embedding) != self.dimension:
                raise EmbeddingDimensionMismatchError(
                    self.dimension, len(rec.embedding), rec.node_id
                )
        params = [
            {"nodeId": rec.node_id, "embedding": [float(x) for x in rec.embedding]}
            for rec in records
        ]
        self.executor.execute_batch(self._insert, params)
        return len(params)

    def clear(self) -> None:
        """Delete every stored embedding."""
        self.executor.execute_query(f"MATCH (e:{self.table}) DELETE e")

    def count(self) -> int:
        """Number of stored embedding rows."""
        rows = self.executor.execute_query(f"MATCH (e:{self.table}) RETURN count(e) AS n")
        if not rows:
            return 0
        return int(read_field(rows[0], "n", 0, 0))

    def __repr__(self) -> str:
        return f"EmbeddingWriter(table={self.table!r}, dimension={self.dimension})"


# ---------------------------------------------------------------------------
# Vector index
# ---------------------------------------------------------------------------


def ensure_index(
    executor: GraphExecutor,
    table: str = EMBEDDING_TABLE,
    index_name: str = VECTOR_INDEX_NAME,
    vector_field: str = VECTOR_FIELD,
    metric: str = VECTOR_METRIC,
) -> bool:
    """
    Create the vector index unless it already exists.

    :return: ``True`` if the index was created, ``False`` if it existed.
    :raises ValueError: For any metric other than ``cosine``.
    :raises UpstreamQueryError: For any failure except "already exists".
    """
    if metric != VECTOR_METRIC:
        raise ValueError(f"Unsupported vector metric {metric!r}; only 'cosine' is supported")
    query = (
        f"CALL CREATE_VECTOR_INDEX('{table}', '{index_name}', '{vector_field}', "
        f"metric := '{metric}')"
    )
    try:
        executor.execute_query(query)
    except Exception as exc:
        err = classify_store_error(exc, query)
        if not isinstance(err, IndexAlreadyExistsError):
            if err is exc:
                raise
            raise err from exc
        logger.warning("Vector index %s on %s already exists: %s", index_name, table, err)
        return False
    logger.info("Created vector index %s on %s.%s", index_name, table, vector_field)
    return True


def drop_index(
    executor: GraphExecutor,
    table: str = EMBEDDING_TABLE,
    index_name: str = VECTOR_INDEX_NAME,
    *,
    missing_ok: bool = False,
) -> bool:
    """
    Drop the vector index.

    :param missing_ok: Treat an absent index as success.
    :return: ``True`` if an index was dropped, ``False`` if there was none.
    :raises IndexMissingError: If the index is absent and *missing_ok* is false.
    """
    query = f"CALL DROP_VECTOR_INDEX('{table}', '{index_name}')"
    try:
        executor.execute_query(query)
    except Exception as exc:
        err = classify_store_error(exc, query)
        if not (missing_ok and isinstance(err, IndexMissingError)):
            if err is exc:
                raise
            raise err from exc
        logger.debug("Vector index %s on %s not present; nothing to drop", index_name, table)
        return False
    logger.info("Dropped vector index %s on %s", index_name, table)
    return True


def vector_literal(vector: Sequence[float], dimension: int) -> str:
    """
    Render *vector* as a ``CAST([...] AS FLOAT[n])`` expression.

    :raises EmbeddingDimensionMismatchError: If ``len(vector) != dimension``.
    """
    if len(vector) != dimension:
        raise EmbeddingDimensionMismatchError(dimension, len(vector))
    values = ",".join(repr(float(x)) for x in vector)
    return f"CAST([{values}] AS FLOAT[{dimension}])"
