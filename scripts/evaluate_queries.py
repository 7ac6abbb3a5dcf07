#!/usr/bin/env python3
"""Resolves a batch of shopper queries against a live backend and reports latency and match quality."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import statistics
import sys
import time

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dotenv import load_dotenv
from smartpick_assistant.service import ShoppingAssistantService


DEFAULT_QUERIES = [
    "blue running shoes",
    "black leather handbag for women",
    "samsung galaxy a series",
    "pink floral women top",
    "wireless earbuds under 2000",
    "red party dress",
    "smartwatch with heart rate monitor",
    "gaming laptop",
    "white sneakers",
    "green yoga mat",
]


def evaluate(service: ShoppingAssistantService, queries: list[str], strict_mode: bool | None) -> dict:
    results = []
    latencies = []
    top_scores = []
    statuses: dict[str, int] = {}

    for query in queries:
        start = time.perf_counter()
        payload = service.resolve(query=query, strict_mode=strict_mode)
        latency_ms = (time.perf_counter() - start) * 1000.0

        products = payload.get("products", [])
        best = max((float(product.get("ai_score") or 0) for product in products), default=0.0)
        status = str(payload.get("status", ""))
        statuses[status] = statuses.get(status, 0) + 1
        latencies.append(latency_ms)
        top_scores.append(best)

        meta = payload.get("meta", {})
        results.append(
            {
                "query": query,
                "status": status,
                "latency_ms": round(latency_ms, 2),
                "products": len(products),
                "top_score": best,
                "requested_type": meta.get("requested_type", ""),
                "detected_color": meta.get("detected_color", ""),
                "search_query": meta.get("search_query", ""),
                "top_titles": [product.get("title", "") for product in products[:3]],
                "message": payload.get("message", ""),
            }
        )

    summary = {
        "queries": len(queries),
        "latency_ms_avg": round(statistics.mean(latencies), 2) if latencies else 0.0,
        "latency_ms_max": round(max(latencies), 2) if latencies else 0.0,
        "top_score_avg": round(statistics.mean(top_scores), 2) if top_scores else 0.0,
        "statuses": statuses,
    }
    return {"summary": summary, "results": results}


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Resolve shopper queries end to end and summarize the outcome.")
    parser.add_argument(
        "--output",
        type=Path,
        default=ROOT_DIR / "docs" / "eval_last_run.json",
        help="Where to write JSON evaluation results.",
    )
    parser.add_argument(
        "--query",
        action="append",
        default=[],
        help="Custom query (can be passed multiple times).",
    )
    parser.add_argument(
        "--queries-file",
        type=Path,
        default=None,
        help="Text file with one query per line.",
    )
    parser.add_argument(
        "--strict",
        choices=("on", "off", "env"),
        default="env",
        help="Strict match setting; 'env' uses SP_STRICT_VISION_MODE.",
    )
    args = parser.parse_args()

    queries = list(args.query)
    if args.queries_file is not None:
        lines = args.queries_file.read_text(encoding="utf-8").splitlines()
        queries.extend(line.strip() for line in lines if line.strip())
    if not queries:
        queries = DEFAULT_QUERIES

    strict_mode = None if args.strict == "env" else args.strict == "on"
    service = ShoppingAssistantService()

    payload = evaluate(service, queries, strict_mode)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    summary = payload["summary"]
    print("Query Resolution Evaluation")
    print(f"queries: {summary['queries']}")
    print(f"latency avg: {summary['latency_ms_avg']} ms (max {summary['latency_ms_max']} ms)")
    print(f"top score avg: {summary['top_score_avg']}")
    for status, count in sorted(summary["statuses"].items()):
        print(f"  {status}: {count}")
    print(f"saved: {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
