"""
test_embedder.py

Tests for the Embedder lifecycle contract and SentenceTransformerEmbedder
(with ``sentence_transformers`` and ``huggingface_hub`` mocked out).
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from code_vec.embedder import (
    Embedder,
    ModelProgress,
    SentenceTransformerEmbedder,
    _repo_id,
)
from code_vec.errors import EmbeddingDimensionMismatchError, ModelLoadError, NotInitializedError

from fakes import FakeEmbedder

# ---------------------------------------------------------------------------
# Embedder base contract
# ---------------------------------------------------------------------------


def test_embedder_encode_raises_not_implemented():
    e = Embedder()
    e.initialize()
    with pytest.raises(NotImplementedError):
        e.embed_batch(["hello"])


def test_embed_before_initialize_raises():
    e = FakeEmbedder()
    assert not e.is_ready()
    with pytest.raises(NotInitializedError):
        e.embed_text("hello")
    with pytest.raises(NotInitializedError):
        e.embed_batch(["hello"])
    assert e.calls == []


def test_initialize_reports_progress_then_ready():
    e = FakeEmbedder(download_steps=(10.0, 60.0))
    seen: list[ModelProgress] = []
    e.initialize(seen.append)
    assert e.is_ready()
    assert [p.progress for p in seen] == [10.0, 60.0, 100.0]
    assert seen[-1].status == "ready"


def test_initialize_is_idempotent():
    e = FakeEmbedder()
    e.initialize()
    seen: list[ModelProgress] = []
    e.initialize(seen.append)
    assert e.load_calls == 1
    assert len(seen) == 1
    assert seen[0].status == "ready"
    assert seen[0].progress == 100.0


def test_initialize_wraps_failure_as_model_load_error():
    e = FakeEmbedder(fail_load=OSError("network unreachable"))
    with pytest.raises(ModelLoadError, match="network unreachable") as info:
        e.initialize()
    assert isinstance(info.value.__cause__, OSError)
    assert not e.is_ready()


def test_embed_batch_preserves_order_and_chunks():
    e = FakeEmbedder(batch_size=2, vectors={"a": [1, 0, 0, 0], "c": [0, 0, 1, 0]})
    e.initialize()
    out = e.embed_batch(["a", "b", "c", "d", "e"])
    assert len(out) == 5
    assert out[0] == [1.0, 0.0, 0.0, 0.0]
    assert out[2] == [0.0, 0.0, 1.0, 0.0]
    assert e.calls == [["a", "b"], ["c", "d"], ["e"]]
    assert all(isinstance(x, float) for x in out[1])


def test_embed_batch_empty():
    e = FakeEmbedder()
    e.initialize()
    assert e.embed_batch([]) == []
    assert e.calls == []


def test_embed_text_matches_batch():
    e = FakeEmbedder()
    e.initialize()
    assert e.embed_text("hello") == e.embed_batch(["hello"])[0]


def test_embed_batch_rejects_short_encoder_output():
    class Broken(FakeEmbedder):
        def encode(self, texts):
            return []

    e = Broken()
    e.initialize()
    with pytest.raises(ValueError):
        e.embed_batch(["x"])


def test_close_requires_reinitialize():
    e = FakeEmbedder()
    e.initialize()
    e.close()
    with pytest.raises(NotInitializedError):
        e.embed_text("x")


def test_embedder_rejects_bad_batch_size():
    with pytest.raises(ValueError):
        FakeEmbedder(batch_size=0)


# ---------------------------------------------------------------------------
# SentenceTransformerEmbedder — mocked to avoid loading real ML models
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_st():
    """Patch sentence_transformers and huggingface_hub in sys.modules."""
    st = MagicMock()
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = 384
    st.SentenceTransformer.return_value = model
    hub = MagicMock()
    hub.snapshot_download.return_value = "/cache/all-MiniLM-L6-v2"
    with patch.dict("sys.modules", {"sentence_transformers": st, "huggingface_hub": hub}):
        yield st, model, hub


def test_repo_id():
    assert _repo_id("all-MiniLM-L6-v2") == "sentence-transformers/all-MiniLM-L6-v2"
    assert _repo_id("Snowflake/snowflake-arctic-embed-xs") == "Snowflake/snowflake-arctic-embed-xs"


def test_ste_construct_does_not_load(mock_st):
    st, _, hub = mock_st
    emb = SentenceTransformerEmbedder("test-model")
    assert not emb.is_ready()
    st.SentenceTransformer.assert_not_called()
    hub.snapshot_download.assert_not_called()


def test_ste_initialize_downloads_and_loads(mock_st):
    st, _, hub = mock_st
    emb = SentenceTransformerEmbedder("all-MiniLM-L6-v2", device="cpu")
    emb.initialize()
    hub.snapshot_download.assert_called_once()
    assert hub.snapshot_download.call_args.args[0] == "sentence-transformers/all-MiniLM-L6-v2"
    assert hub.snapshot_download.call_args.kwargs["tqdm_class"] is None
    st.SentenceTransformer.assert_called_once_with("/cache/all-MiniLM-L6-v2", device="cpu")
    assert emb.is_ready()
    assert emb.dimension == 384


def test_ste_initialize_reports_download_start(mock_st):
    emb = SentenceTransformerEmbedder()
    seen: list[ModelProgress] = []
    emb.initialize(seen.append)
    assert seen[0].status == "download"
    assert seen[0].progress == 0.0
    assert seen[-1].status == "ready"


def test_ste_local_directory_skips_download(mock_st, tmp_path):
    st, _, hub = mock_st
    emb = SentenceTransformerEmbedder(str(tmp_path))
    emb.initialize()
    hub.snapshot_download.assert_not_called()
    st.SentenceTransformer.assert_called_once_with(str(tmp_path), device=None)


def test_ste_dimension_mismatch(mock_st):
    emb = SentenceTransformerEmbedder(dimension=768)
    with pytest.raises(EmbeddingDimensionMismatchError):
        emb.initialize()
    assert not emb.is_ready()


def test_ste_dimension_none_accepts_model(mock_st):
    emb = SentenceTransformerEmbedder(dimension=None)
    emb.initialize()
    assert emb.dimension == 384


def test_ste_load_failure_wrapped(mock_st):
    _, _, hub = mock_st
    hub.snapshot_download.side_effect = ConnectionError("offline")
    emb = SentenceTransformerEmbedder()
    with pytest.raises(ModelLoadError, match="offline"):
        emb.initialize()


def test_ste_embed_batch(mock_st):
    _, model, _ = mock_st
    model.encode.return_value = np.array([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]], dtype="float32")
    emb = SentenceTransformerEmbedder(batch_size=8)
    emb.initialize()
    out = emb.embed_batch(["a", "b"])
    assert out[0] == pytest.approx([0.1, 0.2, 0.3], abs=1e-6)
    assert out[1] == pytest.approx([0.4, 0.5, 0.6], abs=1e-6)
    kwargs = model.encode.call_args.kwargs
    assert kwargs["normalize_embeddings"] is True
    assert kwargs["batch_size"] == 8


def test_ste_close(mock_st):
    emb = SentenceTransformerEmbedder()
    emb.initialize()
    emb.close()
    assert emb.model is None
    assert not emb.is_ready()


def test_ste_repr(mock_st):
    r = repr(SentenceTransformerEmbedder("my-model"))
    assert "SentenceTransformerEmbedder" in r
    assert "my-model" in r
