"""Evaluate retrieval quality against internal QA pairs.

This script expects two JSONL files:

1. A corpus of raw chunks to index (the same shape ``build_index.py``
   reads).  Use ``--collection`` to point at this file, or ``--index`` to
   load an artifact written by ``build_index.py`` instead.
2. A file of evaluation questions with a list of relevant ``answer_ids``.
   Use ``--pairs`` to point at this file.  Example line::

       {"question": "...", "answer_ids": ["doc-1", "doc-2"]}

The script builds an in-memory :class:`HybridRetriever` and computes
Recall@k and MRR for the questions.  ``--lexical-only`` skips the embedding
model entirely, which is handy on machines without one.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

# allow running as a stand-alone script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.config import GLOSSARY_PATH, RETRIEVAL
from services.retrieval import HybridRetriever, IndexSnapshot, build_snapshot
from services.retrieval.glossary import load_glossary
from services.retrieval.query_expander import QueryExpander
from services.retrieval.retriever import Retriever


def load_jsonl(path: Path) -> Iterable[Dict[str, Any]]:
    """Yield dictionaries from a JSONL file."""
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)


def evaluate(retriever: Retriever, pairs: Iterable[Dict[str, Any]], k: int) -> Dict[str, float]:
    """Recall@k and MRR@k averaged over the usable QA pairs."""
    total = 0
    recall = 0.0
    mrr = 0.0
    degraded = 0
    for qa in pairs:
        q = qa.get("question", "")
        rel_ids: List[str] = [str(i) for i in (qa.get("answer_ids") or [])]
        if not q or not rel_ids:
            continue
        result = retriever.retrieve(q, top_k=k)
        if result.degraded:
            degraded += 1
        hit_ids = result.chunk_ids
        # recall@k
        retrieved = sum(1 for i in rel_ids if i in hit_ids)
        recall += retrieved / len(rel_ids)
        # mrr
        rr = 0.0
        for rank, hid in enumerate(hit_ids, 1):
            if hid in rel_ids:
                rr = 1.0 / rank
                break
        mrr += rr
        total += 1
    if not total:
        return {"questions": 0, "recall": 0.0, "mrr": 0.0, "degraded": 0}
    return {"questions": total, "recall": recall / total, "mrr": mrr / total, "degraded": degraded}


def main() -> None:
    parser = argparse.ArgumentParser(description="Evaluate retrieval metrics")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--collection", type=Path, help="JSONL file of raw chunks to index")
    src.add_argument("--index", type=Path, help="index artifact written by build_index.py")
    parser.add_argument(
        "--pairs", required=True, type=Path, help="JSONL file of question/answer ids"
    )
    parser.add_argument("--k", type=int, default=5, help="Top k hits to consider")
    parser.add_argument("--lexical-only", action="store_true", help="do not load an embedding model")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    embedder = None
    if not args.lexical_only:
        from services.embedding import SentenceTransformerEmbedder

        embedder = SentenceTransformerEmbedder(RETRIEVAL.embedding_model)

    if args.index:
        snapshot = IndexSnapshot.load(args.index, RETRIEVAL)
    else:
        snapshot = build_snapshot(list(load_jsonl(args.collection)), embedder=embedder, config=RETRIEVAL)
    expander = QueryExpander(load_glossary(GLOSSARY_PATH), max_expansions=RETRIEVAL.max_expansions)
    retriever = HybridRetriever.from_snapshot(snapshot, embedder=embedder, expander=expander)

    metrics = evaluate(retriever, load_jsonl(args.pairs), args.k)
    if metrics["questions"]:
        print(f"Questions: {metrics['questions']} (degraded: {metrics['degraded']})")
        print(f"Recall@{args.k}: {metrics['recall']:.4f}")
        print(f"MRR@{args.k}: {metrics['mrr']:.4f}")
    else:
        print("No valid QA pairs found.")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
