"""Seed the canonical code catalog and its system aliases from YAML."""

import logging
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from ..schemas.codification import AliasSource
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def load_seed_catalog(path: Path | None = None) -> list[dict[str, Any]]:
    """Read code entries from a seed file (default: the packaged catalog)."""
    if path is None:
        text = resources.files("deal_intel.codification").joinpath("catalog_seed.yaml").read_text()
    else:
        text = Path(path).read_text()
    data = yaml.safe_load(text) or {}
    return data.get("codes", [])


def seed_catalog(store: StateStore, path: Path | None = None) -> dict[str, int]:
    """
    Insert seed codes and aliases that are not in the store yet.

    Existing codes and aliases are left untouched, so re-running is safe.

    Returns:
        Counts of codes_created, aliases_created and aliases_existing
    """
    counts = {"codes_created": 0, "aliases_created": 0, "aliases_existing": 0}

    for entry in load_seed_catalog(path):
        code = store.get_code_by_code(entry["code"])
        if code is None:
            code = store.create_code(
                code=entry["code"],
                display_name=entry.get("display_name", entry["code"]),
                category=entry.get("category", "Other"),
                data_type=entry.get("data_type", "currency"),
            )
            counts["codes_created"] += 1

        for alias in entry.get("aliases", []):
            if store.get_alias(alias) is not None:
                counts["aliases_existing"] += 1
                continue
            store.upsert_alias(alias, code.id, 1.0, AliasSource.SYSTEM_SEED)
            counts["aliases_created"] += 1

    logger.info(
        f"Catalog seeded: {counts['codes_created']} codes, {counts['aliases_created']} aliases"
    )
    return counts
