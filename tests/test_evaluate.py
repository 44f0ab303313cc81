import json

from conftest import CONTRACT
from scripts.evaluate_retrieval import evaluate, load_jsonl


def test_evaluate_recall_and_mrr(retriever):
    pairs = [
        {"question": CONTRACT, "answer_ids": ["C"]},
        {"question": "where are the official channels", "answer_ids": ["E"]},
        {"question": "", "answer_ids": ["A"]},
        {"question": "no answers listed"},
    ]
    metrics = evaluate(retriever, pairs, k=3)
    assert metrics["questions"] == 2
    assert metrics["recall"] == 1.0
    assert metrics["mrr"] == 1.0
    assert metrics["degraded"] == 0


def test_evaluate_without_usable_pairs(retriever):
    assert evaluate(retriever, [], k=5) == {"questions": 0, "recall": 0.0, "mrr": 0.0, "degraded": 0}


def test_load_jsonl_skips_blank_lines(tmp_path):
    path = tmp_path / "pairs.jsonl"
    path.write_text(json.dumps({"question": "q"}) + "\n\n" + json.dumps({"question": "r"}) + "\n", encoding="utf-8")
    assert [row["question"] for row in load_jsonl(path)] == ["q", "r"]


class CannedRetriever:
    """Anything with ``retrieve`` can be evaluated."""

    class _Result:
        def __init__(self, ids):
            self.chunk_ids = ids
            self.degraded = None

    def retrieve(self, query, top_k=None, options=None):
        return self._Result(["x", "y", "z"][:top_k])


def test_evaluate_accepts_any_retriever():
    metrics = evaluate(CannedRetriever(), [{"question": "q", "answer_ids": ["y", "missing"]}], k=2)
    assert metrics["recall"] == 0.5
    assert metrics["mrr"] == 0.5
