"""SQLite schema for the live store.

Notes
-----
The live store is a namespaced key-value table of JSON blobs. Each collection
(profile, items, metadata) is one row and is always read and written whole, so
one row write is the unit of atomicity.
"""

from __future__ import annotations

CURRENT_SCHEMA_VERSION = 2

SCHEMA_V1 = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS store_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL
);
"""
