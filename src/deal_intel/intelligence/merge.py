"""
Confidence-weighted merge of intelligence fields.

For every incoming field: insert when the path is new, replace when the
incoming confidence is strictly higher, otherwise skip. The value kept at a
path is always the highest-confidence submission seen, whatever the order
documents arrive in. Ties keep the value already stored.
"""

from dataclasses import dataclass, field, replace
from typing import Iterable

from ..schemas.intelligence import IntelligenceField


@dataclass
class MergeStats:
    """Counts from one merge call."""

    added: int = 0
    updated: int = 0
    skipped: int = 0
    changed_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {"added": self.added, "updated": self.updated, "skipped": self.skipped}


def merge_fields(
    existing: dict[str, IntelligenceField],
    new_fields: Iterable[IntelligenceField],
) -> tuple[dict[str, IntelligenceField], MergeStats]:
    """
    Merge new fields into an existing field set.

    Pure: neither argument is modified; merged entries are copies.

    Returns:
        (merged fields keyed by path, stats)
    """
    merged = dict(existing)
    stats = MergeStats()

    for new_field in new_fields:
        path = new_field.field_path
        current = merged.get(path)

        if current is None:
            merged[path] = replace(new_field)
            stats.added += 1
        elif new_field.confidence > current.confidence:
            merged[path] = replace(new_field)
            stats.updated += 1
        else:
            stats.skipped += 1
            continue

        if path not in stats.changed_paths:
            stats.changed_paths.append(path)

    return merged, stats
