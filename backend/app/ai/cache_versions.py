"""Algorithm version registry for enrichment cache keys.

Bumping ``current`` for an operation type is the only supported way to
invalidate every cached result of that type: new keys simply miss against the
old entries, which then age out or are removed with the admin CLI.

To bump a version:
1. Change ``current`` for the affected operation type.
2. Append an entry to ``history`` describing the prompt/logic change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

OperationType = Literal["classification", "relationship"]
OPERATION_TYPES: tuple[OperationType, ...] = ("classification", "relationship")


@dataclass(frozen=True, slots=True)
class VersionHistoryEntry:
    version: str
    date: str
    description: str


@dataclass(frozen=True, slots=True)
class AlgorithmVersion:
    current: str
    history: tuple[VersionHistoryEntry, ...]


AI_ALGORITHM_VERSIONS: dict[OperationType, AlgorithmVersion] = {
    "classification": AlgorithmVersion(
        current="1.1.0",
        history=(
            VersionHistoryEntry("1.0.0", "2026-01-19", "Initial caching with content hash normalization"),
            VersionHistoryEntry(
                "1.1.0",
                "2026-10-19",
                "Player-character context and cross-batch high-confidence examples in prompt",
            ),
        ),
    ),
    "relationship": AlgorithmVersion(
        current="1.1.0",
        history=(
            VersionHistoryEntry("1.0.0", "2026-01-19", "Initial caching with order-independent pair hashing"),
            VersionHistoryEntry(
                "1.1.0",
                "2026-10-19",
                "Endpoint content hashes stored as columns for direction recovery",
            ),
        ),
    ),
}


def is_operation_type(value: str) -> bool:
    return value in AI_ALGORITHM_VERSIONS


def get_current_version(operation_type: OperationType) -> str:
    """Return the version currently used in cache keys for an operation type."""

    return AI_ALGORITHM_VERSIONS[operation_type].current


def get_version_history(operation_type: OperationType) -> tuple[VersionHistoryEntry, ...]:
    return AI_ALGORITHM_VERSIONS[operation_type].history


def is_current_version(operation_type: OperationType, version: str) -> bool:
    return AI_ALGORITHM_VERSIONS[operation_type].current == version
