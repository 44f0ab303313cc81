"""Build the index artifact from a JSONL corpus of raw chunks.

Each input line is one chunk mapping (``id``, ``source_id``, ``type``,
``lang``, ``tags``, ``stability``, ``title``, ``body``, ``summary_en``,
``summary_zh`` and optional ``meta_card`` / extra fields).  Invalid chunks
are reported and skipped; the rest go through dedup, lexical indexing and
batched embedding, then are written to ``--out`` (``.parquet`` or JSON
lines).
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.config import RETRIEVAL
from services.retrieval import IndexBuilder
from scripts.evaluate_retrieval import load_jsonl


def _print_progress(event: dict) -> None:
    stage = event.get("stage")
    if stage == "embedding":
        print(f"\r[embedding] batch {event['batch']}/{event['batches']} ({event['percent']}%)", end="", flush=True)
        if event["current"] >= event["total"]:
            print()
    elif event.get("current") == event.get("total"):
        print(f"[{stage}] {event.get('total')} done")


def main() -> None:
    parser = argparse.ArgumentParser(description="Build the retrieval index artifact")
    parser.add_argument("corpus", type=Path, help="JSONL file of raw chunks")
    parser.add_argument("--out", type=Path, default=Path("data/collections/default/index.jsonl"))
    parser.add_argument("--lexical-only", action="store_true", help="skip embeddings")
    parser.add_argument("--batch-size", type=int, default=RETRIEVAL.embed_batch_size)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = RETRIEVAL.override(embed_batch_size=args.batch_size)
    embedder = None
    if not args.lexical_only:
        from services.embedding import SentenceTransformerEmbedder

        embedder = SentenceTransformerEmbedder(config.embedding_model)

    builder = IndexBuilder(config, embedder=embedder)
    snapshot = builder.build(list(load_jsonl(args.corpus)), on_progress=_print_progress)
    out = snapshot.save(args.out)
    print(json.dumps(snapshot.stats(), ensure_ascii=False, indent=2))
    print(f"written: {out}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
