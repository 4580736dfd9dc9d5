from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest


def _ensure_project_root_on_path() -> None:
    # When running via the venv's pytest entrypoint, the CWD is not guaranteed to
    # be on sys.path. Ensure the repository root (containing `vibestream/`) is importable.
    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_path()

from vibestream.errors import SourceError  # noqa: E402
from vibestream.models import SearchQuery  # noqa: E402
from vibestream.repositories import SqliteRepository  # noqa: E402
from vibestream.settings import Settings  # noqa: E402


def video_item(vid: str, **overrides: Any) -> dict[str, Any]:
    """A `youtube#video` payload as returned by videos.list."""
    item: dict[str, Any] = {
        "kind": "youtube#video",
        "id": vid,
        "snippet": {
            "title": f"title {vid}",
            "description": f"description {vid}",
            "channelTitle": f"channel {vid}",
            "publishedAt": "2026-10-01T10:00:00Z",
            "thumbnails": {
                "default": {"url": f"https://i.ytimg.com/vi/{vid}/default.jpg"},
                "high": {"url": f"https://i.ytimg.com/vi/{vid}/hqdefault.jpg"},
            },
        },
        "statistics": {"viewCount": "100", "likeCount": "7"},
        "contentDetails": {"duration": "PT45S"},
    }
    item.update(overrides)
    return item


class FakeSource:
    """In-memory search + details source.

    `search_results` maps a query string (None for keyword-less queries) to the
    ids it returns; `details` maps ids to payloads.
    """

    MAX_BATCH_SIZE = 50

    def __init__(
        self,
        search_results: dict[str | None, list[str]] | None = None,
        details: dict[str, dict[str, Any]] | None = None,
        *,
        fail_queries: set[str | None] | None = None,
        fail_regions: set[str] | None = None,
        fail_details: bool = False,
    ):
        self.search_results = search_results or {}
        self.details = details or {}
        self.fail_queries = fail_queries or set()
        self.fail_regions = fail_regions or set()
        self.fail_details = fail_details
        self.search_calls: list[SearchQuery] = []
        self.detail_calls: list[list[str]] = []

    def search(self, query: SearchQuery) -> list[str]:
        self.search_calls.append(query)
        if query.query in self.fail_queries or query.region in self.fail_regions:
            raise SourceError("quotaExceeded", reason="quotaExceeded", status=403)
        return list(self.search_results.get(query.query, []))

    def get_details(self, ids: list[str]) -> list[dict[str, Any]]:
        assert len(ids) <= self.MAX_BATCH_SIZE
        self.detail_calls.append(list(ids))
        if self.fail_details:
            raise SourceError("details transport error", reason="transport")
        return [self.details[i] for i in ids if i in self.details]


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "VS_DB_PATH": tmp_path / "vibestream.db",
        "VS_DB_BACKEND_MODE": "SQLITE",
        "VS_API_CORS_ALLOW_ALL": False,
        "VS_SCHEDULE_ENABLED": False,
        "VS_API_LOG_ACCESS": False,
        "YOUTUBE_API_KEY": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def repo(settings: Settings) -> SqliteRepository:
    return SqliteRepository(settings)
