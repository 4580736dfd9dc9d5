from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class VideoRecord:
    """One stored video, keyed by the external YouTube video id."""

    id: str
    title: str = ""
    description: str = ""
    channel_name: str = ""
    published_at: str = ""
    thumbnail_url: str = ""
    # None means the source did not report the statistic; 0 is a real count.
    view_count: int | None = None
    like_count: int | None = None
    is_short: bool = False
    duration_seconds: int | None = None
    region: str | None = None
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SearchQuery:
    region: str
    max_results: int = 25
    query: str | None = None
    # any | short | medium | long
    duration: str | None = "short"
    # date | viewCount | relevance | rating
    order: str = "date"
    published_after: str | None = None

    def label(self) -> str:
        if self.query:
            return f"q={self.query!r} region={self.region}"
        return f"order={self.order} region={self.region}"


@dataclass
class FeedPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
