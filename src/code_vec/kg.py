#!/usr/bin/env python3
"""
kg.py

CodeVec — top-level facade for embedding and searching a code graph.

Owns the layers:
    KuzuGraphStore → EmbeddingPipeline → SearchPlanner

Also defines the structured query result types:
    SearchResponse, ContextResponse
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from code_vec.config import (
    DEFAULT_CONFIG,
    DEFAULT_CONTEXT_K,
    DEFAULT_K,
    DEFAULT_MAX_DISTANCE,
    EmbeddingConfig,
)
from code_vec.embedder import Embedder, SentenceTransformerEmbedder
from code_vec.pipeline import EmbeddingPipeline, PipelineStats, ProgressCallback
from code_vec.search import (
    ContextGroup,
    ContextSearchResult,
    SearchPlanner,
    SearchResult,
    group_context,
)
from code_vec.store import GraphExecutor, KuzuGraphStore

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class SearchResponse:
    """
    Result of :meth:`CodeVec.search`.

    :param query: Original query string.
    :param k: Candidates requested.
    :param max_distance: Distance bound applied.
    :param results: Hits ordered by ascending distance.
    """

    query: str
    k: int
    max_distance: float
    results: List[SearchResult]

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "k": self.k,
            "max_distance": self.max_distance,
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self, *, indent: int = 2) -> str:
        """Serialise to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def print_summary(self) -> None:
        """Print a human-readable summary to stdout."""
        sep = "=" * 80
        print(sep)
        print(f"QUERY: {self.query}")
        print(f"k={self.k} | max_distance={self.max_distance} | returned={len(self.results)}")
        print(sep)
        for r in self.results:
            span = f":{r.start_line}-{r.end_line}" if r.start_line is not None else ""
            print(f"{r.distance:.4f}  {r.label:9s} {r.name}  [{r.file_path}{span}]")
        print(sep)


@dataclass
class ContextResponse:
    """
    Result of :meth:`CodeVec.search_with_context`.

    :param query: Original query string.
    :param k: Candidates requested.
    :param rows: Flattened (match, connected) rows.
    """

    query: str
    k: int
    rows: List[ContextSearchResult]

    @property
    def groups(self) -> List[ContextGroup]:
        """Nested view: one entry per match with its neighbours."""
        return group_context(self.rows)

    def to_dict(self, *, nested: bool = False) -> dict:
        out: dict = {"query": self.query, "k": self.k}
        if nested:
            out["matches"] = [g.to_dict() for g in self.groups]
        else:
            out["rows"] = [r.to_dict() for r in self.rows]
        return out

    def to_json(self, *, indent: int = 2, nested: bool = False) -> str:
        """Serialise to JSON string."""
        return json.dumps(self.to_dict(nested=nested), indent=indent, ensure_ascii=False)

    def print_summary(self) -> None:
        """Print a human-readable summary to stdout."""
        sep = "=" * 80
        groups = self.groups
        print(sep)
        print(f"QUERY: {self.query}")
        print(f"k={self.k} | matches={len(groups)} | rows={len(self.rows)}")
        print(sep)
        for g in groups:
            print(f"{g.distance:.4f}  {g.match_label:9s} {g.match_name}  [{g.match_path}]")
            for c in g.connections:
                print(f"    -[{c['relation_type']}]- {c['label']} {c['name']}  [{c['id']}]")
            print()
        print(sep)


# ---------------------------------------------------------------------------
# CodeVec — facade
# ---------------------------------------------------------------------------


class CodeVec:
    """
    Embedding pipeline and semantic search over one graph database.

    Typical usage::

        cv = CodeVec(".codevec/graph.kuzu")
        stats = cv.build(on_progress=lambda p: print(p.to_dict()))
        print(stats)

        cv.search("parse configuration file", k=5).print_summary()
        cv.search_with_context("parse configuration file").print_summary()

    :param db_path: Kùzu database path (ignored when *executor* is given).
    :param config: Embedding tunables.
    :param executor: Any :class:`~code_vec.store.GraphExecutor`; defaults to
                     a :class:`~code_vec.store.KuzuGraphStore` on *db_path*.
    :param embedder: Embedding engine; defaults to a
                     :class:`~code_vec.embedder.SentenceTransformerEmbedder`
                     built from *config*.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        config: EmbeddingConfig = DEFAULT_CONFIG,
        executor: Optional[GraphExecutor] = None,
        embedder: Optional[Embedder] = None,
    ) -> None:
        if db_path is None and executor is None:
            raise ValueError("Either db_path or executor is required")
        self.db_path = Path(db_path) if db_path is not None else None
        self.config = config

        # Lazy-initialised layers
        self._store: Optional[GraphExecutor] = executor
        self._owns_store = executor is None
        self._embedder: Optional[Embedder] = embedder
        self._pipeline: Optional[EmbeddingPipeline] = None
        self._planner: Optional[SearchPlanner] = None

    # ------------------------------------------------------------------
    # Layer accessors (lazy init)
    # ------------------------------------------------------------------

    @property
    def store(self) -> GraphExecutor:
        """Graph store (lazy)."""
        if self._store is None:
            self._store = KuzuGraphStore(self.db_path, dimension=self.config.dimension)
        return self._store

    @property
    def embedder(self) -> Embedder:
        """Embedding engine (lazy, shared between pipeline and search)."""
        if self._embedder is None:
            self._embedder = SentenceTransformerEmbedder(
                self.config.model_name,
                dimension=self.config.dimension,
                batch_size=self.config.batch_size,
                device=self.config.device,
            )
        return self._embedder

    @property
    def pipeline(self) -> EmbeddingPipeline:
        if self._pipeline is None:
            self._pipeline = EmbeddingPipeline(self.store, self.embedder, config=self.config)
        return self._pipeline

    @property
    def planner(self) -> SearchPlanner:
        if self._planner is None:
            self._planner = SearchPlanner(
                self.store, self.embedder, dimension=self.config.dimension
            )
        return self._planner

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create the graph tables if the store supports it."""
        ensure = getattr(self.store, "ensure_schema", None)
        if callable(ensure):
            ensure()

    def build(
        self,
        *,
        on_progress: Optional[ProgressCallback] = None,
        clear_existing: bool = False,
        rebuild_index: bool = False,
    ) -> PipelineStats:
        """
        Run the embedding pipeline.

        :param on_progress: Receives progress events.
        :param clear_existing: Delete stored embeddings first.
        :param rebuild_index: Drop and recreate the vector index.
        :return: :class:`~code_vec.pipeline.PipelineStats`.
        """
        return self.pipeline.run(
            on_progress, clear_existing=clear_existing, rebuild_index=rebuild_index
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def load_model(self) -> None:
        """Initialise the embedder without running the pipeline."""
        self.embedder.initialize()

    def search(
        self,
        q: str,
        *,
        k: int = DEFAULT_K,
        max_distance: float = DEFAULT_MAX_DISTANCE,
    ) -> SearchResponse:
        """Plain semantic search; see :meth:`SearchPlanner.search`."""
        results = self.planner.search(q, k=k, max_distance=max_distance)
        return SearchResponse(query=q, k=k, max_distance=max_distance, results=results)

    def search_with_context(self, q: str, *, k: int = DEFAULT_CONTEXT_K) -> ContextResponse:
        """One-hop context search; see :meth:`SearchPlanner.search_with_context`."""
        rows = self.planner.search_with_context(q, k=k)
        return ContextResponse(query=q, k=k, rows=rows)

    def vector_query(self, q: str, cypher: str) -> List[Any]:
        """Caller-written Cypher with the embedded query spliced in."""
        return self.planner.vector_query(q, cypher)

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release the embedder and any store this facade opened."""
        if self._embedder is not None:
            self._embedder.close()
        if self._owns_store and self._store is not None:
            close = getattr(self._store, "close", None)
            if callable(close):
                close()

    def __enter__(self) -> CodeVec:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"CodeVec(db_path={self.db_path!r}, "
            f"model={self.config.model_name!r}, "
            f"dimension={self.config.dimension})"
        )
