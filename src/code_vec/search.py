#!/usr/bin/env python3
"""
search.py

SearchPlanner — vector search joined back onto the code graph.

Two retrieval modes:

* :meth:`SearchPlanner.search`: top-k nearest embeddings, strict distance
  filter, joined to ``CodeNode``.
* :meth:`SearchPlanner.search_with_context`: the same seeds expanded one
  hop across ``CodeRelation`` in either direction, flattened to one row per
  (match, connected) pair.

Deeper traversals go through :meth:`SearchPlanner.vector_query`, which
splices the embedded query into caller-written Cypher.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from code_vec.config import (
    CONTEXT_MAX_DISTANCE,
    DEFAULT_CONTEXT_K,
    DEFAULT_DIMENSION,
    DEFAULT_K,
    DEFAULT_MAX_DISTANCE,
    EMBEDDING_TABLE,
    NODE_TABLE,
    RELATION_TABLE,
    VECTOR_INDEX_NAME,
)
from code_vec.embedder import NOT_INITIALIZED_MESSAGE, Embedder
from code_vec.errors import CodeVecError, NotInitializedError, classify_store_error
from code_vec.index import vector_literal
from code_vec.store import GraphExecutor, read_field

logger = logging.getLogger(__name__)

QUERY_VECTOR_PLACEHOLDER = "{{QUERY_VECTOR}}"

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class SearchResult:
    """
    A single semantic search hit.

    :param node_id: ``CodeNode.id``.
    :param name: Node name.
    :param label: Node label.
    :param file_path: Defining file.
    :param distance: Cosine distance (lower = more similar).
    :param start_line: First line, if known.
    :param end_line: Last line, if known.
    """

    node_id: str
    name: str
    label: str
    file_path: str
    distance: float
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ContextSearchResult:
    """
    One (match, connected) pair from a context search.

    :param match_id: Matched node id.
    :param match_name: Matched node name.
    :param match_label: Matched node label.
    :param match_path: Matched node file path.
    :param distance: Matched node's cosine distance.
    :param connected_id: Neighbour id.
    :param connected_name: Neighbour name.
    :param connected_label: Neighbour label.
    :param relation_type: ``type`` of the joining ``CodeRelation``.
    """

    match_id: str
    match_name: str
    match_label: str
    match_path: str
    distance: float
    connected_id: str
    connected_name: str
    connected_label: str
    relation_type: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ContextGroup:
    """Nested view of the context rows for one matched node."""

    match_id: str
    match_name: str
    match_label: str
    match_path: str
    distance: float
    connections: List[Dict[str, str]]

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Cypher builders
# ---------------------------------------------------------------------------


def _vector_call(literal: str, k: int) -> str:
    return (
        f"CALL QUERY_VECTOR_INDEX('{EMBEDDING_TABLE}', '{VECTOR_INDEX_NAME}', "
        f"{literal}, {int(k)})\n"
        "    YIELD node AS emb, distance\n"
        "    WITH emb, distance"
    )


def plain_search_query(literal: str, k: int, max_distance: float) -> str:
    """Top-k nearest embeddings under *max_distance*, joined to nodes."""
    _check_max_distance(max_distance)
    return f"""
    {_vector_call(literal, k)}
    WHERE distance < {float(max_distance)!r}
    MATCH (n:{NODE_TABLE} {{id: emb.nodeId}})
    RETURN n.id AS nodeId, n.name AS name, n.label AS label,
           n.filePath AS filePath, distance,
           n.startLine AS startLine, n.endLine AS endLine
    ORDER BY distance
    """


def context_search_query(literal: str, k: int) -> str:
    """Top-k nearest embeddings expanded one hop in either direction."""
    return f"""
    {_vector_call(literal, k)}
    WHERE distance < {CONTEXT_MAX_DISTANCE!r}
    MATCH (match:{NODE_TABLE} {{id: emb.nodeId}})
    MATCH (match)-[r:{RELATION_TABLE}]-(connected:{NODE_TABLE})
    RETURN match.id AS matchId, match.name AS matchName, match.label AS matchLabel,
           match.filePath AS matchPath, distance,
           connected.id AS connectedId, connected.name AS connectedName,
           connected.label AS connectedLabel, r.type AS relationType
    ORDER BY distance, matchId
    """


# ---------------------------------------------------------------------------
# Row readers
# ---------------------------------------------------------------------------


def _opt_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def row_to_result(row) -> SearchResult:
    return SearchResult(
        node_id=str(read_field(row, "nodeId", 0)),
        name=read_field(row, "name", 1, ""),
        label=read_field(row, "label", 2, ""),
        file_path=read_field(row, "filePath", 3, ""),
        distance=float(read_field(row, "distance", 4)),
        start_line=_opt_int(read_field(row, "startLine", 5)),
        end_line=_opt_int(read_field(row, "endLine", 6)),
    )


def row_to_context(row) -> ContextSearchResult:
    return ContextSearchResult(
        match_id=str(read_field(row, "matchId", 0)),
        match_name=read_field(row, "matchName", 1, ""),
        match_label=read_field(row, "matchLabel", 2, ""),
        match_path=read_field(row, "matchPath", 3, ""),
        distance=float(read_field(row, "distance", 4)),
        connected_id=str(read_field(row, "connectedId", 5)),
        connected_name=read_field(row, "connectedName", 6, ""),
        connected_label=read_field(row, "connectedLabel", 7, ""),
        relation_type=read_field(row, "relationType", 8, ""),
    )


def group_context(rows: List[ContextSearchResult]) -> List[ContextGroup]:
    """
    Fold flattened context rows into one group per match.

    Group order follows the first appearance of each match in *rows*.
    """
    groups: Dict[str, ContextGroup] = {}
    for r in rows:
        g = groups.get(r.match_id)
        if g is None:
            g = ContextGroup(
                match_id=r.match_id,
                match_name=r.match_name,
                match_label=r.match_label,
                match_path=r.match_path,
                distance=r.distance,
                connections=[],
            )
            groups[r.match_id] = g
        g.connections.append(
            {
                "id": r.connected_id,
                "name": r.connected_name,
                "label": r.connected_label,
                "relation_type": r.relation_type,
            }
        )
    return list(groups.values())


# ---------------------------------------------------------------------------
# SearchPlanner
# ---------------------------------------------------------------------------


class SearchPlanner:
    """
    Query-time semantic search over the embedding index.

    Example::

        planner = SearchPlanner(store, embedder)
        for hit in planner.search("parse configuration file", k=5):
            print(hit.distance, hit.name)

    Read-only; safe to run alongside other searches.  Fails with
    :class:`~code_vec.errors.IndexMissingError` if the index has not been
    built yet.

    :param executor: Graph store boundary.
    :param embedder: Initialised embedding engine.
    :param dimension: Vector width of the index.
    """

    def __init__(
        self,
        executor: GraphExecutor,
        embedder: Embedder,
        *,
        dimension: int = DEFAULT_DIMENSION,
    ) -> None:
        self.executor = executor
        self.embedder = embedder
        self.dimension = dimension

    def search(
        self,
        query: str,
        k: int = DEFAULT_K,
        max_distance: float = DEFAULT_MAX_DISTANCE,
    ) -> List[SearchResult]:
        """
        Plain semantic search.

        :param query: Natural-language query.
        :param k: Nearest-neighbour candidates to fetch.
        :param max_distance: Exclusive upper bound on distance.
        :return: Results ordered by ascending distance.
        """
        _check_k(k)
        _check_max_distance(max_distance)
        literal = self._query_literal(query)
        rows = self._execute(plain_search_query(literal, k, max_distance))
        results = [row_to_result(r) for r in rows]
        results = [r for r in results if r.distance < max_distance]
        results.sort(key=lambda r: r.distance)
        logger.debug("search(%r, k=%d) -> %d results", query, k, len(results))
        return results

    def search_with_context(self, query: str, k: int = DEFAULT_CONTEXT_K) -> List[ContextSearchResult]:
        """
        Semantic search expanded one hop.

        Matches are filtered at the fixed distance
        :data:`~code_vec.config.CONTEXT_MAX_DISTANCE`.  Expansion depth is
        always one hop; use :meth:`vector_query` for more.

        :param query: Natural-language query.
        :param k: Nearest-neighbour candidates to fetch.
        :return: One row per (match, connected) pair ordered by distance,
                 then match id.
        """
        _check_k(k)
        literal = self._query_literal(query)
        rows = self._execute(context_search_query(literal, k))
        results = [row_to_context(r) for r in rows]
        results = [r for r in results if r.distance < CONTEXT_MAX_DISTANCE]
        results.sort(key=lambda r: (r.distance, r.match_id))
        logger.debug("search_with_context(%r, k=%d) -> %d rows", query, k, len(results))
        return results

    def vector_query(self, query: str, cypher: str) -> List[Any]:
        """
        Run caller-written Cypher with the embedded *query* spliced in.

        Every ``{{QUERY_VECTOR}}`` in *cypher* is replaced with the
        ``CAST([...] AS FLOAT[n])`` literal of the query embedding.

        :return: Rows exactly as the store returned them.
        :raises ValueError: If *cypher* has no placeholder.
        """
        if QUERY_VECTOR_PLACEHOLDER not in cypher:
            raise ValueError(f"Cypher must contain {QUERY_VECTOR_PLACEHOLDER}")
        literal = self._query_literal(query)
        return self._execute(cypher.replace(QUERY_VECTOR_PLACEHOLDER, literal))

    def _execute(self, cypher: str) -> List[Any]:
        try:
            return self.executor.execute_query(cypher)
        except CodeVecError:
            raise
        except Exception as exc:
            raise classify_store_error(exc, cypher) from exc

    def _query_literal(self, query: str) -> str:
        if not self.embedder.is_ready():
            raise NotInitializedError(NOT_INITIALIZED_MESSAGE)
        vec = self.embedder.embed_text(query)
        return vector_literal(vec, self.dimension)

    def __repr__(self) -> str:
        return f"SearchPlanner(embedder={self.embedder!r}, dimension={self.dimension})"


def _check_k(k: int) -> None:
    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")


def _check_max_distance(max_distance: float) -> None:
    if not math.isfinite(max_distance):
        raise ValueError(f"max_distance must be a finite number, got {max_distance!r}")
