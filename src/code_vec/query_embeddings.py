#!/usr/bin/env python3
"""
query_embeddings.py

Semantic query over the code graph:
- plain vector search (default)
- one-hop context expansion (--context)
- caller-written Cypher with {{QUERY_VECTOR}} spliced in (--cypher)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from code_vec.config import DEFAULT_CONFIG, DEFAULT_CONTEXT_K, DEFAULT_K, DEFAULT_MAX_DISTANCE
from code_vec.errors import CodeVecError
from code_vec.kg import CodeVec


def main() -> None:
    p = argparse.ArgumentParser(description="Semantic search over an embedded code graph.")
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
    p.add_argument(
        "--model",
        default=DEFAULT_CONFIG.model_name,
        help="SentenceTransformer model (must match index)",
    )
    p.add_argument("--dim", type=int, default=DEFAULT_CONFIG.dimension, help="Embedding dimension")
    p.add_argument("--q", required=True, help="Semantic query")
    p.add_argument("--k", type=int, default=None, help="Top-k semantic hits")
    p.add_argument(
        "--max-distance",
        type=float,
        default=DEFAULT_MAX_DISTANCE,
        help="Exclusive distance bound for plain search",
    )
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--context", action="store_true", help="Expand matches one hop")
    mode.add_argument(
        "--cypher",
        default=None,
        help="Cypher containing {{QUERY_VECTOR}}; rows are printed as JSON",
    )
    p.add_argument("--nested", action="store_true", help="Group context rows by match (JSON)")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a summary")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = p.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    repo = Path(args.repo).resolve()
    db = Path(args.db) if args.db else repo / ".codevec" / "graph.kuzu"
    config = DEFAULT_CONFIG.with_overrides(model_name=args.model, dimension=args.dim)

    try:
        with CodeVec(db, config=config) as cv:
            cv.load_model()
            if args.cypher:
                rows = cv.vector_query(args.q, args.cypher)
                print(json.dumps(rows, indent=2, ensure_ascii=False, default=str))
            elif args.context:
                res = cv.search_with_context(args.q, k=args.k or DEFAULT_CONTEXT_K)
                if args.json:
                    print(res.to_json(nested=args.nested))
                else:
                    res.print_summary()
            else:
                hits = cv.search(args.q, k=args.k or DEFAULT_K, max_distance=args.max_distance)
                if args.json:
                    print(hits.to_json())
                else:
                    hits.print_summary()
    except CodeVecError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
