#!/usr/bin/env python3
"""
embedder.py

Embedding engine adapter.

:class:`Embedder` owns the lifecycle contract (initialize once, refuse to
encode before that, order-preserving bounded batches).  Subclasses only
implement :meth:`Embedder._load` and :meth:`Embedder.encode`.

:class:`SentenceTransformerEmbedder` is the local backend: weights are
fetched with ``huggingface_hub`` so that download progress can be
forwarded, then loaded with ``sentence-transformers``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np

from code_vec.config import DEFAULT_DIMENSION, DEFAULT_MODEL
from code_vec.errors import (
    CodeVecError,
    EmbeddingDimensionMismatchError,
    ModelLoadError,
    NotInitializedError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Model progress
# ---------------------------------------------------------------------------


@dataclass
class ModelProgress:
    """
    Progress report from model initialisation.

    :param status: ``"download"``, ``"progress"`` or ``"ready"``.
    :param progress: Download percent in ``[0, 100]``, if known.
    :param file: Repository or file being fetched.
    """

    status: str
    progress: Optional[float] = None
    file: Optional[str] = None


ModelProgressCallback = Callable[[ModelProgress], None]

NOT_INITIALIZED_MESSAGE = "Embedding model not initialized. Run embedding pipeline first."

# ---------------------------------------------------------------------------
# Embedder interface (pluggable)
# ---------------------------------------------------------------------------


class Embedder:
    """
    Abstract embedding backend.

    Subclass and implement :meth:`encode` (and :meth:`_load` if the
    backend has anything to load).

    :param dimension: Output vector length.
    :param batch_size: Maximum texts per :meth:`encode` call.
    """

    model_name: str = "embedder"

    def __init__(self, dimension: int = DEFAULT_DIMENSION, batch_size: int = 16) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.dimension = dimension
        self.batch_size = batch_size
        self._ready = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, on_progress: Optional[ModelProgressCallback] = None) -> None:
        """
        Load the model.  A second call is a no-op that reports ready.

        :param on_progress: Receives :class:`ModelProgress` updates.
        :raises ModelLoadError: If the backend fails to load.
        """
        if not self._ready:
            try:
                self._load(on_progress)
            except CodeVecError:
                raise
            except Exception as exc:
                raise ModelLoadError(
                    f"Failed to load embedding model {self.model_name!r}: {exc}"
                ) from exc
            self._ready = True
            logger.info("Embedding model %s ready (dim=%d)", self.model_name, self.dimension)
        if on_progress is not None:
            on_progress(ModelProgress(status="ready", progress=100.0, file=self.model_name))

    def is_ready(self) -> bool:
        return self._ready

    def close(self) -> None:
        """Drop the loaded model; :meth:`initialize` must be called again."""
        self._ready = False

    def _load(self, on_progress: Optional[ModelProgressCallback]) -> None:
        """Backend-specific loading.  Default: nothing to load."""

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, texts: List[str]) -> List[List[float]]:
        """
        Embed at most :attr:`batch_size` strings.

        :param texts: Input strings.
        :return: One vector per input, same order.
        """
        raise NotImplementedError

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed *texts*, splitting into chunks of :attr:`batch_size`.

        :raises NotInitializedError: Before :meth:`initialize`.
        """
        self._require_ready()
        texts = list(texts)
        vectors: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            chunk = texts[i : i + self.batch_size]
            out = self.encode(chunk)
            if len(out) != len(chunk):
                raise ValueError(
                    f"{self.model_name} returned {len(out)} vectors for {len(chunk)} texts"
                )
            vectors.extend(_to_float_list(v) for v in out)
        return vectors

    def embed_text(self, text: str) -> List[float]:
        """Embed a single string."""
        return self.embed_batch([text])[0]

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotInitializedError(NOT_INITIALIZED_MESSAGE)


class SentenceTransformerEmbedder(Embedder):
    """
    Local embedding via ``sentence-transformers``.

    :param model_name: HuggingFace repo id, bare sentence-transformers model
                       name, or local directory.  Defaults to
                       ``"all-MiniLM-L6-v2"``.
    :param dimension: Expected output dimension; loading fails if the model
                      disagrees.  ``None`` accepts whatever the model reports.
    :param batch_size: Texts per encoder call.
    :param device: Torch device (``None`` = library default).
    :param cache_dir: Model cache directory (``None`` = HuggingFace default).
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        *,
        dimension: Optional[int] = DEFAULT_DIMENSION,
        batch_size: int = 16,
        device: Optional[str] = None,
        cache_dir: str | Path | None = None,
    ) -> None:
        super().__init__(dimension=dimension or 0, batch_size=batch_size)
        self.model_name = model_name
        self.expected_dimension = dimension
        self.device = device
        self.cache_dir = str(cache_dir) if cache_dir is not None else None
        self.model = None

    def _load(self, on_progress: Optional[ModelProgressCallback]) -> None:
        from sentence_transformers import SentenceTransformer

        model_path = self._resolve_model_path(on_progress)
        self.model = SentenceTransformer(model_path, device=self.device)
        dim = int(self.model.get_sentence_embedding_dimension())
        if self.expected_dimension and dim != self.expected_dimension:
            self.model = None
            raise EmbeddingDimensionMismatchError(self.expected_dimension, dim)
        self.dimension = dim

    def _resolve_model_path(self, on_progress: Optional[ModelProgressCallback]) -> str:
        if Path(self.model_name).is_dir():
            return self.model_name

        from huggingface_hub import snapshot_download

        repo_id = _repo_id(self.model_name)
        if on_progress is not None:
            on_progress(ModelProgress(status="download", progress=0.0, file=repo_id))
        logger.info("Fetching embedding model %s", repo_id)
        return snapshot_download(
            repo_id,
            cache_dir=self.cache_dir,
            tqdm_class=_reporting_bar(on_progress, repo_id) if on_progress else None,
        )

    def encode(self, texts: List[str]) -> List[List[float]]:
        vecs = self.model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [np.asarray(v, dtype="float32").tolist() for v in vecs]

    def close(self) -> None:
        self.model = None
        super().close()

    def __repr__(self) -> str:
        return f"SentenceTransformerEmbedder(model={self.model_name!r}, dim={self.dimension})"


# ---------------------------------------------------------------------------
# Internal utilities
# ---------------------------------------------------------------------------


def _repo_id(model_name: str) -> str:
    """Bare model names live under the ``sentence-transformers`` org."""
    return model_name if "/" in model_name else f"sentence-transformers/{model_name}"


def _reporting_bar(on_progress: ModelProgressCallback, repo_id: str):
    """A ``tqdm`` subclass that mirrors its position into *on_progress*."""
    from tqdm.auto import tqdm

    class _ReportingBar(tqdm):
        def update(self, n=1):
            displayed = super().update(n)
            if self.total:
                pct = min(100.0, 100.0 * self.n / self.total)
                on_progress(ModelProgress(status="progress", progress=pct, file=repo_id))
            return displayed

    return _ReportingBar


def _to_float_list(vector) -> List[float]:
    if isinstance(vector, np.ndarray):
        return vector.astype(float).tolist()
    return [float(x) for x in vector]
