import time

import pytest

from conftest import CONTRACT, FailingEmbedder, FakeEmbedder, make_chunk
from core.errors import IndexUnavailableError, RetrievalError
from services.retrieval import HybridRetriever, RetrievalState, build_snapshot
from services.retrieval.intents import FusionWeights

ALL_STATES = [s.value for s in RetrievalState]


class SlowEmbedder(FakeEmbedder):
    def embed(self, text):
        time.sleep(1.5)
        return super().embed(text)


def _broken_search(*args, **kwargs):
    raise RuntimeError("lexical index corrupted")


def test_contract_address_query_ranks_exact_match_first(retriever):
    result = retriever.retrieve(CONTRACT)
    assert result.chunk_ids[0] == "C"
    assert result.analysis.intent_types == ["contract_address"]
    assert result.weights.lexical == pytest.approx(0.8)
    top = result.hits[0]["score_breakdown"]
    assert top["lexical_score"] == pytest.approx(1.0)
    assert top["rerank_score"] is not None


def test_paraphrase_returns_one_copy_of_near_duplicates(retriever, snapshot):
    assert "B" not in snapshot.chunks
    result = retriever.retrieve("how do I send tokens to someone through a tweet")
    ids = result.chunk_ids
    assert len({"A", "B"} & set(ids)) == 1
    assert ids[0] == "A"


def test_states_and_bookkeeping(retriever):
    result = retriever.retrieve("where are the official channels")
    assert result.states == ALL_STATES
    assert result.degraded is None
    assert result.errors == {}
    assert set(result.candidates) == {"dense", "lexical", "fused"}
    assert "total_ms" in result.timings
    scores = [h["score"] for h in result.hits]
    assert scores == sorted(scores, reverse=True)
    assert all(s >= 0.1 for s in scores)


def test_cross_script_query_reaches_chinese_chunk(retriever):
    result = retriever.retrieve("WangChai community")
    assert result.expansion.matched_terms
    assert "D" in result.chunk_ids


def test_dense_failure_degrades_to_lexical_only(snapshot):
    retriever = HybridRetriever.from_snapshot(snapshot, embedder=FailingEmbedder())
    result = retriever.retrieve("NYLAGo send tokens")
    assert result.degraded == "lexical_only"
    assert "dense" in result.errors
    assert result.hits
    assert result.weights.lexical == 1.0
    for hit in result.hits:
        assert hit["score_breakdown"]["dense_score"] == 0
        assert hit["score_breakdown"]["rerank_score"] is None
    assert result.states[-1] == "done"


def test_missing_embedder_degrades(snapshot):
    result = HybridRetriever.from_snapshot(snapshot).retrieve("official channels")
    assert result.degraded == "lexical_only"
    assert result.chunk_ids[0] == "E"


def test_lexical_failure_degrades_to_dense_only(retriever, monkeypatch):
    monkeypatch.setattr(retriever.lexical, "search", _broken_search)
    result = retriever.retrieve("official telegram discord channels")
    assert result.degraded == "dense_only"
    assert result.weights.dense == 1.0
    assert all(h["score_breakdown"]["lexical_score"] == 0 for h in result.hits)


def test_both_paths_failing_raises(snapshot, monkeypatch):
    retriever = HybridRetriever.from_snapshot(snapshot, embedder=FailingEmbedder())
    monkeypatch.setattr(retriever.lexical, "search", _broken_search)
    with pytest.raises(RetrievalError):
        retriever.retrieve("anything")


def test_dense_timeout_degrades(snapshot):
    retriever = HybridRetriever.from_snapshot(snapshot, embedder=SlowEmbedder())
    result = retriever.retrieve("official channels", options={"timeout": 0.3})
    assert result.degraded == "lexical_only"
    assert result.errors["dense"] == "timeout"
    assert result.hits


def test_unloaded_index_raises(snapshot, fake_embedder):
    with pytest.raises(IndexUnavailableError):
        HybridRetriever(snapshot.chunks, None, snapshot.vectors, embedder=fake_embedder).retrieve("x")
    with pytest.raises(IndexUnavailableError):
        HybridRetriever(snapshot.chunks, snapshot.lexical, None, embedder=fake_embedder).retrieve("x")


def test_top_k_limits_hits(retriever):
    assert len(retriever.retrieve("NYLA tokens on Solana", top_k=2)) <= 2
    assert len(retriever.retrieve("NYLA tokens on Solana", top_k=1)) == 1


def test_where_filter_applies_to_both_paths(retriever):
    result = retriever.retrieve("NYLA tokens on Solana", options={"where": {"lang": "zh"}})
    assert result.chunk_ids == ["D"] or result.chunk_ids == []
    assert all(h["chunk"].lang.value == "zh" for h in result.hits)


def test_source_dedup_keeps_best_hit_per_source(corpus, fake_embedder):
    corpus.append(make_chunk(
        id="E2", source_id="policy-channels", type="policy", tags=["official"],
        title="Official channels part two",
        body=(
            "Announcements are posted first on the official X account and then mirrored to "
            "Telegram and Discord. Anyone offering support in direct messages is an impostor "
            "and should be reported to the moderators right away."
        ),
    ))
    snapshot = build_snapshot(corpus, embedder=fake_embedder)
    retriever = HybridRetriever.from_snapshot(snapshot, embedder=fake_embedder)

    plain = retriever.retrieve("official channels Telegram Discord", options={"dedupe_sources": False})
    assert {"E", "E2"} <= set(plain.chunk_ids)

    deduped = retriever.retrieve("official channels Telegram Discord")
    sources = [h["chunk"].source_id for h in deduped.hits]
    assert len(sources) == len(set(sources))
    policy = [h for h in deduped.hits if h["chunk"].source_id == "policy-channels"]
    assert policy[0]["source_hits"] == 2


def test_fuse_orders_dense_first_and_clamps_negative_cosine():
    weights = FusionWeights(lexical=0.5, dense=0.5)
    fused = HybridRetriever.fuse([("a", -0.4), ("b", 0.6)], [("c", 0.6), ("b", 0.2)], weights)
    by_id = dict(fused)
    assert by_id["a"]["dense_score"] == 0.0
    assert by_id["b"]["fused_score"] == pytest.approx(0.4)
    assert [cid for cid, _ in fused] == ["b", "c", "a"]


def test_fuse_ties_keep_merge_order():
    weights = FusionWeights(lexical=0.5, dense=0.5)
    fused = HybridRetriever.fuse([("x", 0.4)], [("y", 0.4)], weights)
    assert [cid for cid, _ in fused] == ["x", "y"]


def test_result_to_dict(retriever):
    payload = retriever.retrieve(CONTRACT).to_dict()
    assert payload["hits"][0]["id"] == "C"
    assert set(payload["hits"][0]["score_breakdown"]) >= {
        "dense_score", "lexical_score", "fused_score", "rerank_score", "final_score",
    }
    assert payload["weights"]["reason"].startswith("contract_address")
    assert payload["states"] == ALL_STATES


def test_stats(retriever):
    stats = retriever.stats()
    assert stats["chunks"] == 4
    assert stats["embedder"] == "FakeEmbedder"


def test_query_with_length_changing_case_folding(retriever):
    result = retriever.retrieve("İİİ nyla")
    assert result.states == ALL_STATES
    assert result.expansion.matched_terms
