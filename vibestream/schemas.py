"""Boundary models for loosely-typed YouTube Data API payloads.

Every field is optional and a value of the wrong shape degrades to None
instead of failing validation. These models never leave the normalizer.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @model_validator(mode="before")
    @classmethod
    def _mapping_only(cls, data: Any) -> Any:
        return data if isinstance(data, dict) else {}

    @field_validator("*", mode="wrap")
    @classmethod
    def _none_on_error(cls, value: Any, handler):
        try:
            return handler(value)
        except ValidationError:
            return None


class Thumbnail(_Lenient):
    url: str | None = None
    width: int | None = None
    height: int | None = None


class Snippet(_Lenient):
    title: str | None = None
    description: str | None = None
    channelId: str | None = None
    channelTitle: str | None = None
    publishedAt: str | None = None
    thumbnails: dict[str, Thumbnail] | None = None


class Statistics(_Lenient):
    viewCount: str | None = None
    likeCount: str | None = None
    commentCount: str | None = None


class ContentDetails(_Lenient):
    duration: str | None = None


class SearchResultId(_Lenient):
    kind: str | None = None
    videoId: str | None = None


class RawVideoItem(_Lenient):
    """A `search#result` or `youtube#video` item."""

    # `{"kind": ..., "videoId": ...}` for search results, a plain string for videos.
    id: Any = None
    snippet: Snippet = Field(default_factory=Snippet)
    statistics: Statistics = Field(default_factory=Statistics)
    contentDetails: ContentDetails = Field(default_factory=ContentDetails)

    @field_validator("snippet", "statistics", "contentDetails", mode="before")
    @classmethod
    def _empty_when_missing(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    def video_id(self) -> str | None:
        if isinstance(self.id, dict):
            vid = SearchResultId.model_validate(self.id).videoId
        elif isinstance(self.id, str):
            vid = self.id
        else:
            vid = None
        vid = str(vid or "").strip()
        return vid or None
