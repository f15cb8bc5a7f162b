"""
code_vec: semantic embeddings and vector search over a code knowledge graph.

Graph nodes → node text → embeddings → CodeEmbedding table → vector index,
then plain or one-hop context search at query time.

Public API
----------
Primary entry point::

    from code_vec import CodeVec

    cv = CodeVec(".codevec/graph.kuzu")
    stats = cv.build(on_progress=print)
    cv.search("parse configuration file", k=5).print_summary()
    cv.search_with_context("parse configuration file").print_summary()

Individual layers::

    from code_vec import (
        KuzuGraphStore, EmbeddingPipeline, SearchPlanner,
        Embedder, SentenceTransformerEmbedder,
    )

Result types::

    from code_vec import SearchResult, ContextSearchResult, EmbeddingProgress
"""

__version__ = "0.1.0"

from code_vec.config import EMBEDDABLE_LABELS, EmbeddingConfig
from code_vec.errors import (
    CodeVecError,
    EmbeddingDimensionMismatchError,
    IndexAlreadyExistsError,
    IndexMissingError,
    ModelLoadError,
    NotInitializedError,
    UpstreamQueryError,
)

# Layers
from code_vec.store import GraphExecutor, KuzuGraphStore, read_field
from code_vec.nodes import EmbeddableNode, select_embeddable_nodes
from code_vec.text import synthesize, synthesize_batch
from code_vec.embedder import Embedder, ModelProgress, SentenceTransformerEmbedder
from code_vec.index import EmbeddingRecord, EmbeddingWriter, ensure_index
from code_vec.pipeline import (
    EmbeddingPipeline,
    EmbeddingProgress,
    PipelineStats,
    run_embedding_pipeline,
)
from code_vec.search import ContextGroup, ContextSearchResult, SearchPlanner, SearchResult

# Facade + result types
from code_vec.kg import CodeVec, ContextResponse, SearchResponse

__all__ = [
    # config
    "EmbeddingConfig",
    "EMBEDDABLE_LABELS",
    # errors
    "CodeVecError",
    "NotInitializedError",
    "ModelLoadError",
    "EmbeddingDimensionMismatchError",
    "UpstreamQueryError",
    "IndexAlreadyExistsError",
    "IndexMissingError",
    # layers
    "GraphExecutor",
    "KuzuGraphStore",
    "read_field",
    "EmbeddableNode",
    "select_embeddable_nodes",
    "synthesize",
    "synthesize_batch",
    "Embedder",
    "ModelProgress",
    "SentenceTransformerEmbedder",
    "EmbeddingRecord",
    "EmbeddingWriter",
    "ensure_index",
    "EmbeddingPipeline",
    "EmbeddingProgress",
    "PipelineStats",
    "run_embedding_pipeline",
    "SearchPlanner",
    # facade
    "CodeVec",
    # result types
    "SearchResult",
    "ContextSearchResult",
    "ContextGroup",
    "SearchResponse",
    "ContextResponse",
]
