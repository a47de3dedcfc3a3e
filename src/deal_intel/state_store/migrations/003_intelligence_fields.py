"""
Migration 003: Intelligence fields.

Stores the highest-confidence value per (entity, field path), with the
provenance of the document that supplied it.
"""

import sqlite3

VERSION = 3
NAME = "intelligence_fields"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the intelligence_fields table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS intelligence_fields (
            entity_type TEXT NOT NULL,   -- client, project
            entity_id TEXT NOT NULL,
            field_path TEXT NOT NULL,    -- dotted, e.g. financials.loanAmount
            value_json TEXT NOT NULL,
            confidence REAL NOT NULL,
            source_text TEXT,
            source_document_id TEXT,
            source_document_name TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (entity_type, entity_id, field_path)
        )
    """)

    conn.commit()
