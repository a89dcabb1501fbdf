from __future__ import annotations

CREATE_BLOBS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS blobs (
  name TEXT PRIMARY KEY,
  data BLOB,
  updated_ms BIGINT
);
"""

UPSERT_BLOB_SQL = """
INSERT OR REPLACE INTO blobs (name, data, updated_ms) VALUES (?, ?, ?)
"""

SELECT_BLOB_SQL = """
SELECT data FROM blobs WHERE name = ?
"""

DELETE_BLOB_SQL = """
DELETE FROM blobs WHERE name = ?
"""

LIST_BLOBS_SQL = """
SELECT name, octet_length(data), updated_ms FROM blobs ORDER BY name
"""
