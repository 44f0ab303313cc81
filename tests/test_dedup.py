import numpy as np

from conftest import SEND_BODY, make_chunk
from core.chunking import Chunk
from core.config import RetrievalConfig
from core.hygiene import compute_hash
from services.dedup import (
    ChunkSignature, DeduplicationEngine, dedupe_by_source, hamming_distance, normalize_text,
)


def chunk(**kw):
    raw = make_chunk(**kw)
    return Chunk.from_dict(raw, content_hash=compute_hash(raw))


def test_normalize_text():
    assert normalize_text("  Hello,   World!!  ") == "hello world"
    assert normalize_text("旺柴，的合約。") == "旺柴 的合約"


def test_signatures_are_reproducible():
    a = DeduplicationEngine().signature(chunk())
    b = DeduplicationEngine().signature(chunk())
    assert (a.minhash == b.minhash).all()
    assert a.simhash == b.simhash
    assert a.fingerprint == b.fingerprint
    assert a.fingerprint < 2 ** 16
    assert a.simhash < 2 ** 64


def test_whitespace_and_punctuation_variants_cluster():
    engine = DeduplicationEngine()
    a = chunk(id="a")
    b = chunk(
        id="b",
        body=SEND_BODY.replace(". ", " ... ").replace(" ", "   ").replace(",", " ,"),
        title="Sending tokens -- with NYLAGo!",
    )
    assert engine.similarity(a, b) >= 0.95
    result = engine.deduplicate([a, b])
    assert len(result.kept) == 1
    assert len(result.clusters) == 1
    assert set(result.clusters[0].member_ids) == {"a", "b"}


def test_texts_sharing_only_stop_words_do_not_cluster():
    engine = DeduplicationEngine()
    a = chunk(
        id="a", title="Budget", tags=[], summary_en="Library plans.", summary_zh="图书馆",
        body="The committee will review the budget proposal for the new library building next month.",
    )
    b = chunk(
        id="b", title="Weather", tags=[], summary_en="Storm warning.", summary_zh="风暴",
        body="A storm is expected to hit the coast with heavy rain and strong winds by the weekend.",
    )
    assert engine.similarity(a, b) < 0.3
    result = engine.deduplicate([a, b])
    assert result.clusters == []
    assert [c.id for c in result.kept] == ["a", "b"]


def test_representative_prefers_longer_richer_chunk():
    engine = DeduplicationEngine()
    small_1 = chunk(id="s1", section="howto", source_url="https://example.org/a")
    small_2 = chunk(id="s2", section="howto", source_url="https://example.org/b")
    big = chunk(
        id="big", body=SEND_BODY + " " + SEND_BODY,
        section="howto", source_url="https://example.org/c", as_of="2024-05-01", author="docs-team",
    )
    members = [(c, engine.signature(c)) for c in (small_1, big, small_2)]
    cluster = engine.select_representative(members)
    assert cluster.representative.id == "big"
    assert {c.id for c in cluster.suppressed} == {"s1", "s2"}
    assert cluster.back_references() == {"s1": "big", "s2": "big"}


def test_representative_tie_keeps_first():
    engine = DeduplicationEngine()
    a, b = chunk(id="x1"), chunk(id="x2")
    cluster = engine.select_representative([(a, engine.signature(a)), (b, engine.signature(b))])
    assert cluster.representative.id == "x1"


def test_degenerate_chunk_passes_through(caplog):
    engine = DeduplicationEngine()
    empty = chunk(id="empty", title="!!!", body="...", summary_en="?", summary_zh="。", tags=[])
    normal = chunk(id="n")
    with caplog.at_level("WARNING"):
        result = engine.deduplicate([empty, normal])
    assert result.skipped == ["empty"]
    assert [c.id for c in result.kept] == ["empty", "n"]
    assert "no shingles" in caplog.text


def test_progress_and_stats():
    events = []
    cfg = RetrievalConfig(dedup_workers=2)
    result = DeduplicationEngine(cfg).deduplicate(
        [chunk(id="a"), chunk(id="b"), chunk(id="c", body="Completely different text about staking rewards and validators.")],
        on_progress=events.append,
    )
    stats = result.stats()
    assert stats["total"] == 3
    assert stats["unique"] == 2
    assert stats["removed"] == 1
    assert events[-1]["stage"] == "clustering"
    assert result.suppressed == {"b": "a"}


def test_hamming_distance():
    assert hamming_distance(0b1011, 0b0001) == 2
    assert hamming_distance(2 ** 64 - 1, 0) == 64


def test_dedupe_by_source_keeps_best_hit_in_rank_order():
    hits = [
        {"chunk": chunk(id="1", source_id="s1"), "score": 0.9},
        {"chunk": chunk(id="2", source_id="s2"), "score": 0.8},
        {"chunk": chunk(id="3", source_id="s1"), "score": 0.7},
        {"chunk": chunk(id="4", source_id="s3"), "score": 0.6},
    ]
    out = dedupe_by_source(hits)
    assert [h["chunk"].id for h in out] == ["1", "2", "4"]
    assert out[0]["source_hits"] == 2
    assert out[1]["source_hits"] == 1


def _one_word_variants(text):
    words = text.split(" ")
    for i, word in enumerate(words):
        if word.isalpha() and len(word) > 3:
            yield " ".join(words[:i] + ["quickly"] + words[i + 1:])


def test_near_duplicates_in_different_buckets_are_merged_across_buckets():
    engine = DeduplicationEngine()
    original = chunk(id="orig")
    base = engine.signature(original)
    variant = None
    for n, body in enumerate(_one_word_variants(SEND_BODY)):
        candidate = chunk(id=f"v{n}", body=body)
        if engine.signature(candidate).fingerprint != base.fingerprint:
            variant = candidate
            break
    assert variant is not None

    result = engine.deduplicate([original, variant])
    assert result.bucket_count == 2
    assert len(result.clusters) == 1
    assert set(result.clusters[0].member_ids) == {"orig", variant.id}


def _crafted(chunk_id, simhash, fingerprint):
    return ChunkSignature(
        chunk_id=chunk_id,
        shingle_count=60,
        minhash=np.arange(128, dtype=np.uint64),
        simhash=simhash,
        fingerprint=fingerprint,
        text_length=400,
    )


def test_cross_bucket_pass_gates_on_simhash(monkeypatch):
    # threshold 0.8 * 0.9 = 0.72 over 64 bits: 17 differing bits pass, 18 do not
    engine = DeduplicationEngine()
    a, near, far = chunk(id="a"), chunk(id="near"), chunk(id="far")
    sigs = {
        "a": _crafted("a", 0, 1),
        "near": _crafted("near", (1 << 17) - 1, 2),
        "far": _crafted("far", ((1 << 18) - 1) << 40, 3),
    }
    assert engine.simhash_similarity(sigs["a"].simhash, sigs["far"].simhash) < 0.72
    monkeypatch.setattr(engine, "signature", lambda c: sigs[c.id])

    result = engine.deduplicate([a, near, far])
    assert result.bucket_count == 3
    assert [sorted(c.member_ids) for c in result.clusters] == [["a", "near"]]
    assert [c.id for c in result.kept] == ["a", "far"]
