from __future__ import annotations

import sqlite3
from pathlib import Path


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA temp_store=MEMORY;

CREATE TABLE IF NOT EXISTS videos (
    id TEXT PRIMARY KEY,
    title TEXT,
    description TEXT,
    channel_name TEXT,
    published_at TEXT,
    thumbnail_url TEXT,
    view_count INTEGER,
    like_count INTEGER,
    is_short INTEGER NOT NULL DEFAULT 0,
    duration_seconds INTEGER,
    region TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_videos_created ON videos(created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_videos_region ON videos(region);
"""

VIDEO_COLUMNS = (
    "id",
    "title",
    "description",
    "channel_name",
    "published_at",
    "thumbnail_url",
    "view_count",
    "like_count",
    "is_short",
    "duration_seconds",
    "region",
    "created_at",
    "updated_at",
)

# Merge rules shared by the SQLite and PostgreSQL upserts:
# - absent values (NULL, or '' for text) keep the stored value
# - created_at is written on insert only
# - is_short is only re-derived when the new payload carried a duration
# - published_at equal to the new created_at is the ingestion-time fallback,
#   so it never replaces a stored publish date
UPSERT_SET_SQL = """
    title=COALESCE(NULLIF(excluded.title, ''), videos.title),
    description=COALESCE(NULLIF(excluded.description, ''), videos.description),
    channel_name=COALESCE(NULLIF(excluded.channel_name, ''), videos.channel_name),
    published_at=CASE
        WHEN excluded.published_at = excluded.created_at AND videos.published_at IS NOT NULL
        THEN videos.published_at
        ELSE COALESCE(NULLIF(excluded.published_at, ''), videos.published_at)
    END,
    thumbnail_url=COALESCE(NULLIF(excluded.thumbnail_url, ''), videos.thumbnail_url),
    view_count=COALESCE(excluded.view_count, videos.view_count),
    like_count=COALESCE(excluded.like_count, videos.like_count),
    is_short=CASE WHEN excluded.duration_seconds IS NULL THEN videos.is_short ELSE excluded.is_short END,
    duration_seconds=COALESCE(excluded.duration_seconds, videos.duration_seconds),
    region=COALESCE(excluded.region, videos.region),
    updated_at=excluded.updated_at
"""


def connect(db_path: Path, *, timeout: float = 30.0) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=timeout)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()
