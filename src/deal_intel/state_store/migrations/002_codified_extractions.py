"""
Migration 002: Codified extractions.

One codified extraction per document; its items carry the Fast Pass /
Smart Pass mapping status. Mapping stats are computed from the items.
"""

import sqlite3

VERSION = 2
NAME = "codified_extractions"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create codified_extractions and codified_items."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS codified_extractions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            document_id TEXT NOT NULL UNIQUE,
            client_id TEXT,
            project_id TEXT,
            job_id INTEGER,
            smart_pass_completed INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS codified_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            extraction_id INTEGER NOT NULL,
            position INTEGER NOT NULL,
            item_id TEXT NOT NULL,
            original_name TEXT NOT NULL,
            value REAL NOT NULL,
            category TEXT NOT NULL,
            data_type TEXT NOT NULL,
            currency TEXT,
            item_code TEXT,
            suggested_code TEXT,
            suggested_code_id INTEGER,
            confidence REAL NOT NULL DEFAULT 0,
            -- matched, suggested, pending_review, confirmed, unmatched
            mapping_status TEXT NOT NULL,
            UNIQUE (extraction_id, item_id),
            FOREIGN KEY (extraction_id) REFERENCES codified_extractions(id) ON DELETE CASCADE
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_codified_items_status
        ON codified_items (mapping_status)
    """)

    conn.commit()
