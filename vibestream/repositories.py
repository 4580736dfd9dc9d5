from __future__ import annotations

import base64
import binascii
import logging
import threading
from typing import Any, Protocol

from .db import UPSERT_SET_SQL, VIDEO_COLUMNS, connect, init_db
from .errors import ConfigurationError, StoreWriteError
from .models import FeedPage, VideoRecord
from .normalizer import utc_now_iso
from .settings import Settings

logger = logging.getLogger(__name__)


class VideoRepository(Protocol):
    backend_name: str

    def upsert(self, record: VideoRecord, *, updated_at: str | None = None) -> None: ...

    def get(self, video_id: str) -> dict[str, Any] | None: ...

    def list_recent(self, limit: int = 20, cursor: str | None = None) -> FeedPage: ...

    def count(self) -> int: ...

    def stats(self) -> dict[str, Any]: ...


def encode_cursor(created_at: str, video_id: str) -> str:
    raw = f"{created_at}\x1f{video_id}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> tuple[str, str]:
    s = str(cursor or "").strip()
    try:
        raw = base64.urlsafe_b64decode(s + "=" * (-len(s) % 4)).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValueError(f"invalid cursor: {cursor!r}") from e
    created_at, sep, video_id = raw.partition("\x1f")
    if not sep or not created_at or not video_id:
        raise ValueError(f"invalid cursor: {cursor!r}")
    return created_at, video_id


def _row_params(record: VideoRecord, updated_at: str) -> tuple:
    return (
        record.id,
        record.title,
        record.description,
        record.channel_name,
        record.published_at,
        record.thumbnail_url,
        record.view_count,
        record.like_count,
        1 if record.is_short else 0,
        record.duration_seconds,
        record.region,
        record.created_at or updated_at,
        updated_at,
    )


def _row_out(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["is_short"] = bool(d.get("is_short"))
    return d


def _page(rows: list[Any], limit: int) -> FeedPage:
    items = [_row_out(r) for r in rows[:limit]]
    next_cursor = None
    if len(rows) > limit and items:
        last = items[-1]
        next_cursor = encode_cursor(str(last["created_at"]), str(last["id"]))
    return FeedPage(items=items, next_cursor=next_cursor)


class SqliteRepository:
    backend_name = "sqlite"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._db_path = settings.VS_DB_PATH
        # Serialize writers; SQLite allows a single writer anyway.
        self._write_lock = threading.Lock()
        conn = connect(self._db_path)
        try:
            init_db(conn)
        finally:
            conn.close()

    def _conn(self):
        return connect(self._db_path)

    def upsert(self, record: VideoRecord, *, updated_at: str | None = None) -> None:
        now = updated_at or utc_now_iso()
        cols = ", ".join(VIDEO_COLUMNS)
        marks = ", ".join("?" for _ in VIDEO_COLUMNS)
        sql = f"INSERT INTO videos({cols}) VALUES({marks}) ON CONFLICT(id) DO UPDATE SET {UPSERT_SET_SQL}"
        try:
            with self._write_lock:
                conn = self._conn()
                try:
                    conn.execute(sql, _row_params(record, now))
                    conn.commit()
                finally:
                    conn.close()
        except Exception as e:
            raise StoreWriteError(record.id, str(e)) from e

    def get(self, video_id: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM videos WHERE id=?", (video_id,)).fetchone()
        finally:
            conn.close()
        return _row_out(row) if row else None

    def list_recent(self, limit: int = 20, cursor: str | None = None) -> FeedPage:
        limit = max(1, int(limit))
        conn = self._conn()
        try:
            if cursor:
                created_at, video_id = decode_cursor(cursor)
                rows = conn.execute(
                    """
                    SELECT * FROM videos
                    WHERE created_at < ? OR (created_at = ? AND id < ?)
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (created_at, created_at, video_id, limit + 1),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM videos ORDER BY created_at DESC, id DESC LIMIT ?",
                    (limit + 1,),
                ).fetchall()
        finally:
            conn.close()
        return _page(rows, limit)

    def count(self) -> int:
        conn = self._conn()
        try:
            return int(conn.execute("SELECT COUNT(*) FROM videos").fetchone()[0])
        finally:
            conn.close()

    def stats(self) -> dict[str, Any]:
        conn = self._conn()
        try:
            total = conn.execute("SELECT COUNT(*) FROM videos").fetchone()[0]
            shorts = conn.execute("SELECT COUNT(*) FROM videos WHERE is_short=1").fetchone()[0]
            last_updated_at = conn.execute("SELECT MAX(updated_at) FROM videos").fetchone()[0]
            regions = conn.execute(
                "SELECT COALESCE(region, '') AS region, COUNT(*) AS n FROM videos GROUP BY region ORDER BY n DESC"
            ).fetchall()
        finally:
            conn.close()
        return {
            "backend": self.backend_name,
            "counts": {"items": int(total), "shorts": int(shorts)},
            "regions": {str(r["region"]): int(r["n"]) for r in regions},
            "last_updated_at": last_updated_at,
        }


class PostgresRepository:
    backend_name = "postgres"

    def __init__(self, settings: Settings):
        self.settings = settings
        self._dsn = str(settings.VS_POSTGRES_DSN or "").strip()
        if not self._dsn:
            raise ConfigurationError("VS_POSTGRES_DSN is required for VS_DB_BACKEND_MODE=POSTGRES")
        with self._connect() as conn:
            self._ensure_schema(conn)

    def _connect(self):
        import psycopg
        from psycopg.rows import dict_row

        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _ensure_schema(self, conn) -> None:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS videos (
                    id TEXT PRIMARY KEY,
                    title TEXT,
                    description TEXT,
                    channel_name TEXT,
                    published_at TEXT,
                    thumbnail_url TEXT,
                    view_count BIGINT,
                    like_count BIGINT,
                    is_short INTEGER NOT NULL DEFAULT 0,
                    duration_seconds INTEGER,
                    region TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_created ON videos(created_at DESC, id DESC)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_region ON videos(region)")
        conn.commit()

    def upsert(self, record: VideoRecord, *, updated_at: str | None = None) -> None:
        now = updated_at or utc_now_iso()
        cols = ", ".join(VIDEO_COLUMNS)
        marks = ", ".join("%s" for _ in VIDEO_COLUMNS)
        sql = f"INSERT INTO videos({cols}) VALUES({marks}) ON CONFLICT(id) DO UPDATE SET {UPSERT_SET_SQL}"
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, _row_params(record, now))
                conn.commit()
        except Exception as e:
            raise StoreWriteError(record.id, str(e)) from e

    def get(self, video_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM videos WHERE id=%s", (video_id,))
                row = cur.fetchone()
        return _row_out(row) if row else None

    def list_recent(self, limit: int = 20, cursor: str | None = None) -> FeedPage:
        limit = max(1, int(limit))
        with self._connect() as conn:
            with conn.cursor() as cur:
                if cursor:
                    created_at, video_id = decode_cursor(cursor)
                    cur.execute(
                        """
                        SELECT * FROM videos
                        WHERE (created_at, id) < (%s, %s)
                        ORDER BY created_at DESC, id DESC
                        LIMIT %s
                        """,
                        (created_at, video_id, limit + 1),
                    )
                else:
                    cur.execute(
                        "SELECT * FROM videos ORDER BY created_at DESC, id DESC LIMIT %s",
                        (limit + 1,),
                    )
                rows = cur.fetchall()
        return _page(rows, limit)

    def count(self) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) AS n FROM videos")
                return int(cur.fetchone()["n"])

    def stats(self) -> dict[str, Any]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT COUNT(*) AS total,
                           COUNT(*) FILTER (WHERE is_short=1) AS shorts,
                           MAX(updated_at) AS last_updated_at
                    FROM videos
                    """
                )
                head = cur.fetchone()
                cur.execute(
                    "SELECT COALESCE(region, '') AS region, COUNT(*) AS n FROM videos GROUP BY region ORDER BY n DESC"
                )
                regions = cur.fetchall()
        return {
            "backend": self.backend_name,
            "counts": {"items": int(head["total"]), "shorts": int(head["shorts"])},
            "regions": {str(r["region"]): int(r["n"]) for r in regions},
            "last_updated_at": head["last_updated_at"],
        }


def get_repository(settings: Settings) -> VideoRepository:
    mode = str(getattr(settings, "VS_DB_BACKEND_MODE", "SQLITE") or "SQLITE").strip().upper()
    if mode == "POSTGRES":
        return PostgresRepository(settings)
    if mode != "SQLITE":
        raise ConfigurationError(f"unknown VS_DB_BACKEND_MODE: {mode!r}")
    return SqliteRepository(settings)
