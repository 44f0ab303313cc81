import math

from core.tokenize import tokenize
from services.retrieval.bm25_local import LexicalIndex

DOCS = [
    {"id": "d1", "text": "solana staking rewards explained", "metadata": {"lang": "en", "tags": ["staking"]}},
    {"id": "d2", "text": "how to bridge tokens to solana", "metadata": {"lang": "en", "tags": ["bridge"]}},
    {"id": "d3", "text": "旺柴的合約地址", "metadata": {"lang": "zh", "tags": ["contract"]}},
    {"id": "d4", "text": "staking staking staking validators", "metadata": {"lang": "en", "tags": ["staking"]}},
]


def build():
    return LexicalIndex().build(DOCS)


def test_postings_and_stats():
    index = build()
    assert index.postings["staking"] == {"d1": 1, "d4": 3}
    assert index.doc_lengths["d1"] == 4
    stats = index.stats()
    assert stats["documents"] == 4
    assert stats["k1"] == 1.2 and stats["b"] == 0.75


def test_search_only_returns_overlapping_docs():
    hits = build().search(tokenize("staking"), top_k=10)
    assert [doc_id for doc_id, _ in hits] == ["d4", "d1"]
    assert all(score > 0 for _, score in hits)


def test_cjk_exact_match():
    hits = build().search(tokenize("旺柴的合約"), top_k=5)
    assert hits[0][0] == "d3"
    assert len(hits) == 1


def test_idf_never_negative():
    index = LexicalIndex().build([{"id": str(i), "text": "common word"} for i in range(5)])
    assert index.idf("common") > 0
    assert index.idf("missing") == 0.0
    n, df = 5, 5
    assert math.isclose(index.idf("common"), math.log(1 + (n - df + 0.5) / (df + 0.5)))


def test_ties_keep_index_order():
    index = LexicalIndex().build([
        {"id": "x", "text": "alpha beta"},
        {"id": "y", "text": "alpha gamma"},
        {"id": "z", "text": "alpha delta"},
    ])
    assert [d for d, _ in index.search(["alpha"], top_k=3)] == ["x", "y", "z"]


def test_top_k_and_normalize():
    hits = build().search(tokenize("solana staking"), top_k=2, normalize=True)
    assert len(hits) == 2
    assert hits[0][1] == 1.0
    assert 0 < hits[1][1] <= 1.0


def test_where_filter():
    index = build()
    hits = index.search(["solana"], top_k=5, where={"tags": {"$contains": "bridge"}})
    assert [d for d, _ in hits] == ["d2"]
    hits = index.search(["staking"], top_k=5, where={"$and": [{"lang": "en"}, {"tags": {"$nin": ["bridge"]}}]})
    assert {d for d, _ in hits} == {"d1", "d4"}


def test_explain():
    info = build().explain(tokenize("solana airdrop"))
    assert info["matched"] == {"solana": 2}
    assert info["missing"] == ["airdrop"]
    assert info["coverage"] == 0.5


def test_rebuild_replaces_content():
    index = build()
    index.build([{"id": "only", "text": "fresh corpus"}])
    assert len(index) == 1
    assert index.search(["staking"]) == []
