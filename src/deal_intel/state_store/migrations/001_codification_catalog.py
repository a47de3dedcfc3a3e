"""
Migration 001: Canonical code catalog and alias store.

Creates:
- canonical_codes: registry of codes such as <stamp.duty>
- item_code_aliases: one mapping per normalized alias (UNIQUE)
- store_versions: counters bumped on catalog/alias writes so in-memory
  lookups know when to rebuild
"""

import sqlite3

VERSION = 1
NAME = "codification_catalog"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create catalog, alias and version tables."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS canonical_codes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT NOT NULL UNIQUE,
            display_name TEXT NOT NULL,
            category TEXT NOT NULL,
            -- currency, number, percentage, string
            data_type TEXT NOT NULL DEFAULT 'currency',
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS item_code_aliases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            alias TEXT NOT NULL,
            alias_normalized TEXT NOT NULL UNIQUE,
            canonical_code_id INTEGER NOT NULL,
            canonical_code TEXT NOT NULL,
            confidence REAL NOT NULL,
            -- system_seed, llm_suggested, user_confirmed, manual
            source TEXT NOT NULL,
            usage_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (canonical_code_id) REFERENCES canonical_codes(id)
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_item_code_aliases_code
        ON item_code_aliases (canonical_code_id)
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS store_versions (
            name TEXT PRIMARY KEY,
            version INTEGER NOT NULL DEFAULT 0
        )
    """)

    conn.commit()
