#!/usr/bin/env python3
"""
config.py

Configuration for the embedding pipeline and search layer.

Table, index and label names are fixed constants shared by the writer,
the index builder and the search planner.  Tunables live on
:class:`EmbeddingConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional, Tuple

# ---------------------------------------------------------------------------
# Schema names
# ---------------------------------------------------------------------------

NODE_TABLE = "CodeNode"
RELATION_TABLE = "CodeRelation"
EMBEDDING_TABLE = "CodeEmbedding"
VECTOR_INDEX_NAME = "code_embedding_idx"
VECTOR_FIELD = "embedding"
VECTOR_METRIC = "cosine"

# Closed allow-list of node labels that receive embeddings
EMBEDDABLE_LABELS: Tuple[str, ...] = ("Function", "Class", "Method", "Interface", "File")

# ---------------------------------------------------------------------------
# Search thresholds
# ---------------------------------------------------------------------------

DEFAULT_K = 10
DEFAULT_CONTEXT_K = 5
DEFAULT_MAX_DISTANCE = 0.5
# Fixed filter for context search; intentionally not a parameter.
CONTEXT_MAX_DISTANCE = 0.5

DEFAULT_MODEL = "all-MiniLM-L6-v2"
DEFAULT_DIMENSION = 384


@dataclass(frozen=True)
class EmbeddingConfig:
    """
    Tunables for one pipeline run and the engine it drives.

    :param model_name: Sentence-transformer model name or HuggingFace repo id.
    :param dimension: Output dimension of the model; also the
                      ``FLOAT[n]`` width of the embedding column.
    :param batch_size: Nodes per pipeline batch and texts per encoder call.
    :param max_content_chars: Maximum source characters per node text.
    :param include_file_path: Emit ``File:`` / ``Path:`` lines in node text.
    :param device: Torch device for the encoder (``None`` = library default).
    :param labels: Node labels eligible for embedding.
    """

    model_name: str = DEFAULT_MODEL
    dimension: int = DEFAULT_DIMENSION
    batch_size: int = 16
    max_content_chars: int = 500
    include_file_path: bool = True
    device: Optional[str] = None
    labels: Tuple[str, ...] = EMBEDDABLE_LABELS

    def __post_init__(self) -> None:
        for name in ("dimension", "batch_size", "max_content_chars"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if not self.labels:
            raise ValueError("labels must not be empty")
        object.__setattr__(self, "labels", tuple(self.labels))

    def with_overrides(self, **overrides: object) -> "EmbeddingConfig":
        """
        Return a copy with *overrides* applied.

        ``None`` values are ignored so that unset CLI flags or partial
        dicts fall through to the current values.

        :raises TypeError: On an unknown option name.
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown embedding option(s): {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self


DEFAULT_CONFIG = EmbeddingConfig()
