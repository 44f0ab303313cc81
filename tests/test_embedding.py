import pytest

from conftest import FailingEmbedder, FakeEmbedder
from core.errors import EmbeddingError
from services.embedding import SentenceTransformerEmbedder, embed_all, iter_embedding_batches


def test_batches_report_progress():
    texts = [f"text number {i}" for i in range(70)]
    events = []
    vectors = embed_all(FakeEmbedder(), texts, batch_size=32, on_progress=events.append)
    assert len(vectors) == 70
    assert [e["current"] for e in events] == [32, 64, 70]
    assert events[-1]["percent"] == 100.0
    assert all(e["batches"] == 3 for e in events)


def test_generator_yields_offsets():
    starts = [start for start, _, _ in iter_embedding_batches(FakeEmbedder(), ["a b"] * 5, batch_size=2)]
    assert starts == [0, 2, 4]


def test_failure_is_wrapped():
    with pytest.raises(EmbeddingError, match="batch 1/1"):
        embed_all(FailingEmbedder(), ["hello"])


def test_wrong_vector_count():
    class Short(FakeEmbedder):
        def embed_batch(self, texts):
            return super().embed_batch(texts)[:-1]

    with pytest.raises(EmbeddingError):
        embed_all(Short(), ["one", "two"])


def test_empty_input():
    assert embed_all(FakeEmbedder(), []) == []


def test_sentence_transformer_is_lazy():
    embedder = SentenceTransformerEmbedder("some-model")
    assert embedder.model_name == "some-model"
    assert embedder._model is None
    assert embedder.embed_batch([]) == []
