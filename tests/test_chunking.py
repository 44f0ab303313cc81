from conftest import CONTRACT, make_chunk
from core.chunking import Chunk, load_records, persist_records
from core.hygiene import compute_hash
from services.retrieval import IndexSnapshot


def test_from_dict_keeps_extra_fields_as_metadata():
    chunk = Chunk.from_dict(make_chunk(section="howto", score=0.9, tags=["b", "a", "a"]))
    assert chunk.tags == frozenset({"a", "b"})
    assert chunk.metadata == {"section": "howto", "score": 0.9}
    assert chunk.upstream_score == 0.9
    assert chunk.metadata_field_count == 2
    assert chunk.to_dict()["tags"] == ["a", "b"]


def test_meta_card_rendering_order():
    chunk = Chunk.from_dict(make_chunk(meta_card={
        "blockchain": "Ethereum", "contract_address": CONTRACT, "launch_date": "2024-05-01",
        "ticker_symbol": "$NYLA", "notes": [],
    }))
    assert chunk.render_meta_card().splitlines() == [
        f"Contract Address: {CONTRACT}",
        "Ticker Symbol: $NYLA",
        "Blockchain: Ethereum",
        "Launch Date: 2024-05-01",
    ]
    assert Chunk.from_dict(make_chunk()).render_meta_card() == ""


def test_search_text_includes_card_and_both_summaries():
    chunk = Chunk.from_dict(make_chunk(meta_card={"contract_address": CONTRACT}))
    text = chunk.search_text()
    assert chunk.title in text
    assert chunk.summary_zh in text
    assert CONTRACT in text
    assert "nylago payments" in text


def test_jsonl_round_trip(tmp_path):
    raw = make_chunk(id="C", meta_card={"contract_address": CONTRACT}, score=0.5)
    chunk = Chunk.from_dict(raw, content_hash=compute_hash(raw))
    path = persist_records([chunk.to_record([0.5, 0.25]), Chunk.from_dict(make_chunk(id="X")).to_record()],
                           tmp_path / "index.jsonl")
    rows = load_records(path)
    assert [r["id"] for r in rows] == ["C", "X"]
    assert rows[0]["embedding"] == [0.5, 0.25]
    assert rows[1]["embedding"] is None
    back = Chunk.from_record(rows[0])
    assert back == chunk


def test_snapshot_save_and_load(snapshot, tmp_path):
    path = snapshot.save(tmp_path / "idx" / "index.jsonl")
    loaded = IndexSnapshot.load(path)
    assert list(loaded.chunks) == list(snapshot.chunks)
    assert loaded.embeddings.keys() == snapshot.embeddings.keys()
    assert loaded.lexical.stats() == snapshot.lexical.stats()
    assert loaded.vectors.dimension == snapshot.vectors.dimension
    assert loaded.chunks["C"].meta_card["contract_address"] == CONTRACT


def test_snapshot_stats(snapshot):
    stats = snapshot.stats()
    assert stats["chunks"] == 4
    assert stats["embedded"] == 4
    assert stats["hygiene"]["accepted"] == 5
    assert stats["dedup"]["removed"] == 1
