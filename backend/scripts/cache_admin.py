from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from backend.app.services.result_cache import CACHE_TTL_SECONDS, ResultCache
from backend.app.services.storage import JsonDocumentStore

DEFAULT_CACHE_FILE = Path(
    os.getenv("DATA_DIR") or (Path(__file__).resolve().parents[1] / "data_runtime")
) / "search-cache.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect or maintain the search result cache.")
    parser.add_argument("--cache-file", type=Path, default=DEFAULT_CACHE_FILE)
    parser.add_argument("--ttl-seconds", type=int, default=CACHE_TTL_SECONDS)
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("stats", help="Print active/expired entry counts and keys")
    sub.add_parser("sweep", help="Remove entries older than twice the TTL")
    sub.add_parser("clear", help="Remove every cached search")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cache = ResultCache(JsonDocumentStore(args.cache_file, default={}), ttl_seconds=args.ttl_seconds)

    if args.command == "stats":
        print(json.dumps(cache.stats(), ensure_ascii=False, indent=2))
    elif args.command == "sweep":
        removed = cache.sweep()
        print(f"Removed {removed} stale cache entries from {args.cache_file}")
    elif args.command == "clear":
        cache.clear()
        print(f"Cleared {args.cache_file}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
