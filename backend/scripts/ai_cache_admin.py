"""Administer the AI enrichment cache directly against the database.

Usage (from repository root):
    python backend/scripts/ai_cache_admin.py stats
    python backend/scripts/ai_cache_admin.py prune-expired
    python backend/scripts/ai_cache_admin.py invalidate-version classification 1.0.0
    python backend/scripts/ai_cache_admin.py invalidate-team <team-id>
    python backend/scripts/ai_cache_admin.py versions
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Make `app` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.ai.cache_versions import AI_ALGORITHM_VERSIONS, OPERATION_TYPES
from app.services.enrichment_cache import CacheValidationError, EnrichmentCache


def build_parser() -> argparse.ArgumentParser:
    """Build the admin CLI parser."""

    parser = argparse.ArgumentParser(description="AI enrichment cache administration.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("stats", help="Show cache statistics.")
    commands.add_parser("prune-expired", help="Delete all expired cache entries.")
    commands.add_parser("versions", help="Show current algorithm versions and their history.")

    invalidate_version = commands.add_parser(
        "invalidate-version",
        help="Delete entries written by one algorithm version.",
    )
    invalidate_version.add_argument("operation_type", help=f"One of: {', '.join(OPERATION_TYPES)}")
    invalidate_version.add_argument("version", help="Algorithm version, e.g. 1.0.0")

    invalidate_team = commands.add_parser("invalidate-team", help="Delete every entry for a team.")
    invalidate_team.add_argument("team_id")
    return parser


def show_stats(cache: EnrichmentCache) -> None:
    stats = cache.get_stats()
    print("=== AI Cache Statistics ===")
    print(f"total_entries={stats.total_entries}")
    for operation_type in OPERATION_TYPES:
        print(f"  {operation_type}={stats.by_type.get(operation_type, 0)}")
    print(f"total_hits={stats.total_hits}")
    print(f"expiring_within_7_days={stats.expiring_soon}")
    if stats.oldest_entry is not None:
        print(f"oldest_entry={stats.oldest_entry.isoformat()}")
    if stats.newest_entry is not None:
        print(f"newest_entry={stats.newest_entry.isoformat()}")


def show_versions() -> None:
    for operation_type, version in AI_ALGORITHM_VERSIONS.items():
        print(f"{operation_type} current={version.current}")
        for entry in version.history:
            print(f"  {entry.version} ({entry.date}) {entry.description}")


def main(argv: list[str] | None = None, cache: EnrichmentCache | None = None) -> int:
    """Run one admin command and return the process exit code."""

    args = build_parser().parse_args(argv)
    if args.command == "versions":
        show_versions()
        return 0

    cache = cache or EnrichmentCache()
    if args.command == "stats":
        show_stats(cache)
    elif args.command == "prune-expired":
        print(f"deleted={cache.prune_expired()}")
    elif args.command == "invalidate-version":
        try:
            deleted = cache.invalidate_by_version(args.operation_type, args.version)
        except CacheValidationError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        print(f"deleted={deleted}")
    elif args.command == "invalidate-team":
        print(f"deleted={cache.invalidate_by_team(args.team_id)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
