"""
test_pipeline.py

Tests for EmbeddingPipeline phase ordering, progress arithmetic and
failure reporting.
"""

from __future__ import annotations

import pytest

from code_vec.config import EmbeddingConfig
from code_vec.errors import EmbeddingDimensionMismatchError, ModelLoadError, UpstreamQueryError
from code_vec.pipeline import (
    EmbeddingPipeline,
    EmbeddingProgress,
    PipelineStats,
    batch_bounds,
    embedding_percent,
    round_half_up,
    run_embedding_pipeline,
)

from fakes import FakeEmbedder, FakeExecutor, node

CFG = EmbeddingConfig(dimension=4, batch_size=10)


def _graph(n: int) -> FakeExecutor:
    return FakeExecutor(
        [node(f"fn:{i:03d}", f"func_{i}", content=f"def func_{i}(): pass") for i in range(n)]
    )


def _run(ex, embedder=None, config=CFG, **kw):
    events: list[EmbeddingProgress] = []
    pipeline = EmbeddingPipeline(ex, embedder or FakeEmbedder(), config=config)
    stats = pipeline.run(events.append, **kw)
    return stats, events


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "total, size, expected",
    [
        (0, 10, []),
        (5, 10, [(0, 5)]),
        (10, 10, [(0, 10)]),
        (25, 10, [(0, 10), (10, 20), (20, 25)]),
        (3, 1, [(0, 1), (1, 2), (2, 3)]),
    ],
)
def test_batch_bounds(total, size, expected):
    assert batch_bounds(total, size) == expected


def test_batch_bounds_rejects_zero():
    with pytest.raises(ValueError):
        batch_bounds(5, 0)


def test_round_half_up():
    assert round_half_up(47.5) == 48
    assert round_half_up(48.4) == 48
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3


def test_embedding_percent_band():
    assert embedding_percent(0, 25) == 20
    assert embedding_percent(10, 25) == 48
    assert embedding_percent(20, 25) == 76
    assert embedding_percent(25, 25) == 90


# ---------------------------------------------------------------------------
# Empty graph
# ---------------------------------------------------------------------------


def test_empty_graph_emits_single_ready():
    ex = FakeExecutor()
    embedder = FakeEmbedder()
    stats, events = _run(ex, embedder)

    after_load = [e for e in events if e.phase != "loading-model"]
    assert [e.to_dict() for e in after_load] == [
        {"phase": "ready", "percent": 100, "nodesProcessed": 0, "totalNodes": 0}
    ]
    assert embedder.calls == []
    assert ex.batches == []
    assert ex.indexes == set()
    assert stats.total_nodes == 0
    assert stats.index_name is None


# ---------------------------------------------------------------------------
# Normal run
# ---------------------------------------------------------------------------


def test_batches_and_percents_for_25_nodes():
    ex = _graph(25)
    embedder = FakeEmbedder()
    stats, events = _run(ex, embedder)

    embedding = [e for e in events if e.phase == "embedding"]
    assert embedding[0].percent == 20
    assert embedding[0].current_batch == 0
    per_batch = embedding[1:]
    assert [e.percent for e in per_batch] == [48, 76, 90]
    assert [e.nodes_processed for e in per_batch] == [10, 20, 25]
    assert [e.current_batch for e in per_batch] == [1, 2, 3]
    assert all(e.total_batches == 3 for e in per_batch)
    assert all(e.total_nodes == 25 for e in per_batch)

    assert [len(c) for c in embedder.calls] == [10, 10, 5]
    assert [len(p) for _, p in ex.batches] == [10, 10, 5]

    assert stats.total_nodes == 25
    assert stats.nodes_embedded == 25
    assert stats.total_batches == 3
    assert stats.index_created is True
    assert stats.dimension == 4


def test_phase_order():
    _, events = _run(_graph(3))
    phases = []
    for e in events:
        if not phases or phases[-1] != e.phase:
            phases.append(e.phase)
    assert phases == ["loading-model", "embedding", "indexing", "ready"]
    assert events[-1].percent == 100
    indexing = next(e for e in events if e.phase == "indexing")
    assert indexing.percent == 90


def test_percent_monotonic_and_bounded():
    _, events = _run(_graph(37), config=EmbeddingConfig(dimension=4, batch_size=4))
    percents = [e.percent for e in events]
    assert percents == sorted(percents)
    assert all(0 <= p <= 100 for p in percents)
    emb = [e.percent for e in events if e.phase == "embedding"]
    assert all(20 <= p <= 90 for p in emb)


def test_loading_model_progress():
    _, events = _run(_graph(1), FakeEmbedder(download_steps=(50.0,)))
    loading = [e for e in events if e.phase == "loading-model"]
    assert loading[0].percent == 0
    assert loading[0].model_download_percent == 0
    assert loading[1].percent == 10
    assert loading[1].model_download_percent == 50.0
    assert loading[-1].percent == 20
    assert loading[-1].model_download_percent == 100


def test_loading_model_progress_never_decreases():
    embedder = FakeEmbedder(download_steps=(80.0, 30.0, 90.0))
    _, events = _run(_graph(1), embedder)
    loading = [e.percent for e in events if e.phase == "loading-model"]
    assert loading == sorted(loading)
    assert max(loading) == 20


def test_written_vectors_are_per_node():
    ex = _graph(2)
    embedder = FakeEmbedder()
    _run(ex, embedder)
    assert [nid for nid, _ in ex.embeddings] == ["fn:000", "fn:001"]
    assert all(len(v) == 4 for _, v in ex.embeddings)


def test_rerun_keeps_existing_index():
    ex = _graph(3)
    embedder = FakeEmbedder()
    _run(ex, embedder)
    stats, events = _run(ex, embedder)
    assert events[-1].phase == "ready"
    assert stats.index_created is False
    assert len(ex.indexes) == 1
    # append-only: the second run duplicates rows
    assert len(ex.embeddings) == 6


def test_clear_existing_replaces_embeddings():
    ex = _graph(3)
    embedder = FakeEmbedder()
    _run(ex, embedder)
    _run(ex, embedder, clear_existing=True)
    assert len(ex.embeddings) == 3


def test_clear_existing_on_empty_graph_removes_stale_rows():
    ex = FakeExecutor()
    ex.embeddings = [("stale", [0.1, 0.2, 0.3, 0.4])]
    stats, events = _run(ex, clear_existing=True)
    assert ex.embeddings == []
    assert "MATCH (e:CodeEmbedding) DELETE e" in ex.queries
    assert events[-1].to_dict() == {
        "phase": "ready",
        "percent": 100,
        "nodesProcessed": 0,
        "totalNodes": 0,
    }
    assert stats.total_nodes == 0


def test_clear_failure_on_empty_graph_emits_error():
    ex = FakeExecutor()
    ex.fail_on["DELETE e"] = UpstreamQueryError("locked")
    events = []
    with pytest.raises(UpstreamQueryError):
        EmbeddingPipeline(ex, FakeEmbedder(), config=CFG).run(events.append, clear_existing=True)
    assert events[-1].phase == "error"
    assert not any(e.phase == "ready" for e in events)


def test_stats_report_stored_embeddings():
    ex = _graph(3)
    embedder = FakeEmbedder()
    first, _ = _run(ex, embedder)
    second, _ = _run(ex, embedder)
    assert first.stored_embeddings == 3
    assert second.stored_embeddings == 6
    assert "stored      : 6 embeddings" in str(second)


def test_rebuild_index_drops_then_recreates():
    ex = _graph(3)
    embedder = FakeEmbedder()
    _run(ex, embedder)
    stats, events = _run(ex, embedder, rebuild_index=True)
    assert stats.index_created is True
    assert ex.indexes == {("CodeEmbedding", "code_embedding_idx")}
    drops = [q for q in ex.queries if "DROP_VECTOR_INDEX" in q]
    assert len(drops) == 1
    assert events[-1].phase == "ready"


def test_rebuild_index_without_existing_index():
    ex = _graph(2)
    stats, events = _run(ex, rebuild_index=True)
    assert stats.index_created is True
    assert events[-1].phase == "ready"


def test_run_embedding_pipeline_shortcut():
    events = []
    stats = run_embedding_pipeline(_graph(2), FakeEmbedder(), events.append, CFG)
    assert isinstance(stats, PipelineStats)
    assert events[-1].phase == "ready"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_model_load_failure_emits_error_then_raises():
    events = []
    pipeline = EmbeddingPipeline(
        _graph(3), FakeEmbedder(fail_load=OSError("no network")), config=CFG
    )
    with pytest.raises(ModelLoadError):
        pipeline.run(events.append)
    assert events[-1].phase == "error"
    assert "no network" in events[-1].error
    assert not any(e.phase == "embedding" for e in events)


def test_store_failure_mid_run_emits_error():
    ex = _graph(25)
    ex.fail_on["CodeEmbedding"] = UpstreamQueryError("write failed")
    events = []
    with pytest.raises(UpstreamQueryError):
        EmbeddingPipeline(ex, FakeEmbedder(), config=CFG).run(events.append)
    errors = [e for e in events if e.phase == "error"]
    assert len(errors) == 1
    assert errors[0].to_dict() == {"phase": "error", "percent": 0, "error": "write failed"}
    assert not any(e.phase in ("indexing", "ready") for e in events)


def test_dimension_mismatch_fails_before_write():
    ex = _graph(3)
    embedder = FakeEmbedder(dimension=3)
    events = []
    with pytest.raises(EmbeddingDimensionMismatchError):
        EmbeddingPipeline(ex, embedder, config=CFG).run(events.append)
    assert ex.batches == []
    assert events[-1].phase == "error"


def test_run_without_callback():
    stats = EmbeddingPipeline(_graph(2), FakeEmbedder(), config=CFG).run()
    assert stats.nodes_embedded == 2


# ---------------------------------------------------------------------------
# Wire shapes
# ---------------------------------------------------------------------------


def test_progress_to_dict_omits_unset():
    p = EmbeddingProgress(phase="indexing", percent=90, nodes_processed=5, total_nodes=5)
    assert p.to_dict() == {
        "phase": "indexing",
        "percent": 90,
        "nodesProcessed": 5,
        "totalNodes": 5,
    }


def test_stats_str_and_dict():
    stats = PipelineStats(
        total_nodes=3,
        nodes_embedded=3,
        total_batches=1,
        dimension=4,
        model="fake",
        index_name="code_embedding_idx",
        index_created=True,
    )
    assert stats.to_dict()["index_created"] is True
    text = str(stats)
    assert "3/3" in text
    assert "code_embedding_idx (created)" in text
