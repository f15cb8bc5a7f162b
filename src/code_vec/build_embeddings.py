#!/usr/bin/env python3
"""
build_embeddings.py

CLI entry point: CodeNode graph → CodeEmbedding table + vector index.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from code_vec.config import DEFAULT_CONFIG, EMBEDDABLE_LABELS
from code_vec.errors import CodeVecError
from code_vec.kg import CodeVec
from code_vec.pipeline import EmbeddingProgress


def _print_progress(p: EmbeddingProgress) -> None:
    if p.phase == "loading-model":
        detail = f"model {p.model_download_percent or 0:.0f}%"
    elif p.phase == "embedding":
        detail = (
            f"batch {p.current_batch}/{p.total_batches} "
            f"nodes {p.nodes_processed}/{p.total_nodes}"
        )
    elif p.phase == "error":
        detail = p.error or ""
    else:
        detail = f"nodes {p.nodes_processed or 0}/{p.total_nodes or 0}"
    print(f"[{p.percent:3d}%] {p.phase:13s} {detail}", flush=True)


def main() -> None:
    p = argparse.ArgumentParser(
        description="Embed code graph nodes and build the vector index."
    )
    p.add_argument(
        "--repo",
        default=".",
        help="Repository root directory (default: current directory)",
    )
    p.add_argument(
        "--db",
        default=None,
        help="Kùzu database path (default: <repo>/.codevec/graph.kuzu)",
    )
    p.add_argument("--model", default=DEFAULT_CONFIG.model_name, help="SentenceTransformer model name")
    p.add_argument("--dim", type=int, default=DEFAULT_CONFIG.dimension, help="Embedding dimension")
    p.add_argument("--batch", type=int, default=DEFAULT_CONFIG.batch_size, help="Embedding batch size")
    p.add_argument(
        "--max-chars",
        type=int,
        default=DEFAULT_CONFIG.max_content_chars,
        help="Maximum content characters per node",
    )
    p.add_argument("--no-path", action="store_true", help="Omit file paths from node text")
    p.add_argument(
        "--labels",
        default=",".join(EMBEDDABLE_LABELS),
        help="Comma-separated node labels to embed",
    )
    p.add_argument("--device", default=None, help="Torch device (cpu, cuda, mps)")
    p.add_argument("--wipe", action="store_true", help="Delete existing embeddings first")
    p.add_argument(
        "--rebuild-index",
        action="store_true",
        help="Drop and recreate the vector index",
    )
    p.add_argument("--quiet", action="store_true", help="Suppress progress lines")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    repo = Path(args.repo).resolve()
    db = Path(args.db) if args.db else repo / ".codevec" / "graph.kuzu"
    labels = tuple(s.strip() for s in args.labels.split(",") if s.strip())

    config = DEFAULT_CONFIG.with_overrides(
        model_name=args.model,
        dimension=args.dim,
        batch_size=args.batch,
        max_content_chars=args.max_chars,
        include_file_path=not args.no_path,
        device=args.device,
        labels=labels,
    )

    try:
        with CodeVec(db, config=config) as cv:
            cv.ensure_schema()
            stats = cv.build(
                on_progress=None if args.quiet else _print_progress,
                clear_existing=args.wipe,
                rebuild_index=args.rebuild_index,
            )
    except CodeVecError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)

    print("OK:")
    print(stats)


if __name__ == "__main__":
    main()
