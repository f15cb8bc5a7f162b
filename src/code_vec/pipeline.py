#!/usr/bin/env python3
"""
pipeline.py

EmbeddingPipeline — sequences the embedding phases and reports progress.

Phases run strictly in order::

    loading-model (0-20%) → embedding (20-90%) → indexing (90-100%) → ready

with ``error`` reachable from any phase.  Progress is pushed synchronously
to a caller-supplied callback; a failure is reported once as an ``error``
event and then re-raised.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from code_vec.config import DEFAULT_CONFIG, EMBEDDING_TABLE, VECTOR_INDEX_NAME, EmbeddingConfig
from code_vec.embedder import Embedder, ModelProgress
from code_vec.index import EmbeddingRecord, EmbeddingWriter, drop_index, ensure_index
from code_vec.nodes import EmbeddableNode, select_embeddable_nodes
from code_vec.store import GraphExecutor
from code_vec.text import synthesize_batch

logger = logging.getLogger(__name__)

PHASE_LOADING_MODEL = "loading-model"
PHASE_EMBEDDING = "embedding"
PHASE_INDEXING = "indexing"
PHASE_READY = "ready"
PHASE_ERROR = "error"

# Percent bands
MODEL_BAND_END = 20
EMBEDDING_BAND_END = 90
COMPLETE = 100

# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingProgress:
    """
    One progress event.

    :param phase: Pipeline phase tag.
    :param percent: Overall progress in ``[0, 100]``.
    :param model_download_percent: Model download progress (loading-model).
    :param nodes_processed: Nodes embedded so far.
    :param total_nodes: Nodes selected for this run.
    :param current_batch: 1-based index of the batch just finished.
    :param total_batches: Number of batches in this run.
    :param error: Failure message (error phase).
    """

    phase: str
    percent: int
    model_download_percent: Optional[float] = None
    nodes_processed: Optional[int] = None
    total_nodes: Optional[int] = None
    current_batch: Optional[int] = None
    total_batches: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Wire shape: camelCase keys, unset fields omitted."""
        out: Dict[str, object] = {"phase": self.phase, "percent": self.percent}
        optional = {
            "modelDownloadPercent": self.model_download_percent,
            "nodesProcessed": self.nodes_processed,
            "totalNodes": self.total_nodes,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "error": self.error,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out


ProgressCallback = Callable[[EmbeddingProgress], None]


def _ignore(_: EmbeddingProgress) -> None:
    pass


# ---------------------------------------------------------------------------
# Run statistics
# ---------------------------------------------------------------------------


@dataclass
class PipelineStats:
    """
    Summary returned by :meth:`EmbeddingPipeline.run`.

    :param total_nodes: Embeddable nodes selected.
    :param nodes_embedded: Embedding rows written.
    :param total_batches: Batches processed.
    :param dimension: Vector dimension.
    :param model: Embedding model name.
    :param index_name: Vector index name (``None`` if indexing was skipped).
    :param index_created: ``True`` if this run created the index,
                          ``False`` if it already existed, ``None`` if skipped.
    :param stored_embeddings: Rows in the embedding table after the run
                              (``None`` if indexing was skipped).
    :param elapsed: Wall-clock seconds.
    """

    total_nodes: int
    nodes_embedded: int
    total_batches: int
    dimension: int
    model: str
    index_name: Optional[str] = None
    index_created: Optional[bool] = None
    stored_embeddings: Optional[int] = None
    elapsed: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_nodes": self.total_nodes,
            "nodes_embedded": self.nodes_embedded,
            "total_batches": self.total_batches,
            "dimension": self.dimension,
            "model": self.model,
            "index_name": self.index_name,
            "index_created": self.index_created,
            "stored_embeddings": self.stored_embeddings,
            "elapsed": self.elapsed,
        }

    def __str__(self) -> str:
        lines = [
            f"model       : {self.model}  dim={self.dimension}",
            f"nodes       : {self.nodes_embedded}/{self.total_nodes} in {self.total_batches} batches",
        ]
        if self.index_name is not None:
            state = "created" if self.index_created else "existing"
            lines.append(f"index       : {self.index_name} ({state})")
        if self.stored_embeddings is not None:
            lines.append(f"stored      : {self.stored_embeddings} embeddings")
        lines.append(f"elapsed     : {self.elapsed:.2f}s")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Batch arithmetic
# ---------------------------------------------------------------------------


def batch_bounds(total: int, batch_size: int) -> List[tuple[int, int]]:
    """
    ``[start, end)`` slices covering ``range(total)``.

    The last slice may be shorter than *batch_size*.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    total_batches = math.ceil(total / batch_size)
    return [
        (i * batch_size, min(i * batch_size + batch_size, total)) for i in range(total_batches)
    ]


def round_half_up(value: float) -> int:
    """Round to nearest integer, halves away from zero for non-negatives."""
    return int(math.floor(value + 0.5))


def embedding_percent(processed: int, total: int) -> int:
    """Overall percent after *processed* of *total* nodes are embedded."""
    span = EMBEDDING_BAND_END - MODEL_BAND_END
    return round_half_up(MODEL_BAND_END + (processed / total) * span)


# ---------------------------------------------------------------------------
# EmbeddingPipeline
# ---------------------------------------------------------------------------


class EmbeddingPipeline:
    """
    Node selection → text → embedding → storage → vector index.

    Example::

        store = KuzuGraphStore(".codevec/graph.kuzu")
        pipeline = EmbeddingPipeline(store, SentenceTransformerEmbedder())
        stats = pipeline.run(lambda p: print(p.phase, p.percent))

    Not safe to run concurrently against the same store; callers
    serialise runs.

    :param executor: Graph store boundary.
    :param embedder: Embedding engine (initialised by :meth:`run`).
    :param config: Tunables; defaults to :data:`~code_vec.config.DEFAULT_CONFIG`.
    :param writer: Embedding writer; built from *executor* if omitted.
    """

    def __init__(
        self,
        executor: GraphExecutor,
        embedder: Embedder,
        *,
        config: EmbeddingConfig = DEFAULT_CONFIG,
        writer: Optional[EmbeddingWriter] = None,
    ) -> None:
        self.executor = executor
        self.embedder = embedder
        self.config = config
        self.writer = writer or EmbeddingWriter(executor, dimension=config.dimension)

    def run(
        self,
        on_progress: Optional[ProgressCallback] = None,
        *,
        clear_existing: bool = False,
        rebuild_index: bool = False,
    ) -> PipelineStats:
        """
        Execute every phase once.

        :param on_progress: Receives :class:`EmbeddingProgress` events.
        :param clear_existing: Delete stored embeddings before embedding,
                               even when no node qualifies.
        :param rebuild_index: Drop the vector index (if present) before
                              creating it again.
        :return: :class:`PipelineStats`.
        :raises Exception: Whatever a phase raised, after an ``error`` event.
        """
        emit = on_progress or _ignore
        started = time.perf_counter()
        try:
            self._load_model(emit)
            nodes = select_embeddable_nodes(self.executor, self.config.labels)
            total = len(nodes)
            logger.info("Found %d embeddable nodes", total)

            if clear_existing:
                self.writer.clear()
                logger.info("Cleared existing embeddings")

            if total == 0:
                emit(
                    EmbeddingProgress(
                        phase=PHASE_READY, percent=COMPLETE, nodes_processed=0, total_nodes=0
                    )
                )
                return self._stats(0, 0, 0, started)

            written, batches = self._embed(nodes, emit)

            emit(
                EmbeddingProgress(
                    phase=PHASE_INDEXING,
                    percent=EMBEDDING_BAND_END,
                    nodes_processed=total,
                    total_nodes=total,
                )
            )
            if rebuild_index:
                drop_index(self.executor, EMBEDDING_TABLE, VECTOR_INDEX_NAME, missing_ok=True)
            logger.info("Building vector index %s", VECTOR_INDEX_NAME)
            created = ensure_index(self.executor, EMBEDDING_TABLE, VECTOR_INDEX_NAME)
            stored = self.writer.count()

            emit(
                EmbeddingProgress(
                    phase=PHASE_READY,
                    percent=COMPLETE,
                    nodes_processed=total,
                    total_nodes=total,
                )
            )
            stats = self._stats(total, written, batches, started, created=created, stored=stored)
            logger.info("Embedding pipeline complete in %.2fs", stats.elapsed)
            return stats
        except Exception as exc:
            logger.exception("Embedding pipeline failed")
            emit(EmbeddingProgress(phase=PHASE_ERROR, percent=0, error=str(exc) or repr(exc)))
            raise

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _load_model(self, emit: ProgressCallback) -> None:
        emit(EmbeddingProgress(phase=PHASE_LOADING_MODEL, percent=0, model_download_percent=0))
        last = 0

        def forward(mp: ModelProgress) -> None:
            nonlocal last
            download = mp.progress or 0.0
            pct = min(MODEL_BAND_END, max(last, round_half_up(download * 0.2)))
            last = pct
            emit(
                EmbeddingProgress(
                    phase=PHASE_LOADING_MODEL, percent=pct, model_download_percent=download
                )
            )

        logger.info("Loading embedding model %s", self.embedder.model_name)
        self.embedder.initialize(forward)
        emit(
            EmbeddingProgress(
                phase=PHASE_LOADING_MODEL, percent=MODEL_BAND_END, model_download_percent=100
            )
        )

    def _embed(self, nodes: List[EmbeddableNode], emit: ProgressCallback) -> tuple[int, int]:
        total = len(nodes)
        bounds = batch_bounds(total, self.config.batch_size)
        total_batches = len(bounds)
        processed = 0
        written = 0

        emit(
            EmbeddingProgress(
                phase=PHASE_EMBEDDING,
                percent=MODEL_BAND_END,
                nodes_processed=0,
                total_nodes=total,
                current_batch=0,
                total_batches=total_batches,
            )
        )

        for batch_index, (start, end) in enumerate(bounds):
            batch = nodes[start:end]
            texts = synthesize_batch(batch, self.config)
            vectors = self.embedder.embed_batch(texts)
            records = [
                EmbeddingRecord(node_id=node.id, embedding=vec)
                for node, vec in zip(batch, vectors)
            ]
            written += self.writer.write_batch(records)
            processed += len(batch)

            logger.debug(
                "Batch %d/%d: %d nodes (%d/%d)",
                batch_index + 1,
                total_batches,
                len(batch),
                processed,
                total,
            )
            emit(
                EmbeddingProgress(
                    phase=PHASE_EMBEDDING,
                    percent=embedding_percent(processed, total),
                    nodes_processed=processed,
                    total_nodes=total,
                    current_batch=batch_index + 1,
                    total_batches=total_batches,
                )
            )
        return written, total_batches

    def _stats(
        self,
        total: int,
        written: int,
        batches: int,
        started: float,
        *,
        created: Optional[bool] = None,
        stored: Optional[int] = None,
    ) -> PipelineStats:
        return PipelineStats(
            total_nodes=total,
            nodes_embedded=written,
            total_batches=batches,
            dimension=self.embedder.dimension,
            model=self.embedder.model_name,
            index_name=VECTOR_INDEX_NAME if created is not None else None,
            index_created=created,
            stored_embeddings=stored,
            elapsed=time.perf_counter() - started,
        )

    def __repr__(self) -> str:
        return f"EmbeddingPipeline(embedder={self.embedder!r}, config={self.config!r})"


def run_embedding_pipeline(
    executor: GraphExecutor,
    embedder: Embedder,
    on_progress: Optional[ProgressCallback] = None,
    config: Optional[EmbeddingConfig] = None,
) -> PipelineStats:
    """Functional shortcut for ``EmbeddingPipeline(...).run(on_progress)``."""
    pipeline = EmbeddingPipeline(executor, embedder, config=config or DEFAULT_CONFIG)
    return pipeline.run(on_progress)
