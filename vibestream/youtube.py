"""YouTube Data API v3 search + details source.

Quota costs (10,000 units/day free):
- search.list: 100 units
- videos.list: 1 unit (up to 50 ids per request)
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import ConfigurationError, SourceError
from .models import SearchQuery

logger = logging.getLogger(__name__)


class SearchSource(Protocol):
    def search(self, query: SearchQuery) -> list[str]: ...


class DetailSource(Protocol):
    MAX_BATCH_SIZE: int

    def get_details(self, ids: list[str]) -> list[dict[str, Any]]: ...


class VideoSource(SearchSource, DetailSource, Protocol):
    pass


def _error_reason(exc: HttpError) -> str | None:
    details = getattr(exc, "error_details", None)
    if isinstance(details, list) and details:
        first = details[0]
        if isinstance(first, dict):
            return first.get("reason")
    return None


class YouTubeSource:
    """Search + details calls against the YouTube Data API.

    The discovery client is built lazily; every request is bounded by
    `timeout` seconds and serialized, since httplib2 connections are not
    thread-safe.
    """

    MAX_BATCH_SIZE = 50
    MAX_SEARCH_RESULTS = 50

    QUOTA_SEARCH = 100
    QUOTA_VIDEOS = 1

    def __init__(self, api_key: str | None, *, timeout: float = 15.0):
        key = str(api_key or "").strip()
        if not key:
            raise ConfigurationError("YOUTUBE_API_KEY (or YT_API_KEY) is not configured")
        self._api_key = key
        self._timeout = timeout
        self._service = None
        self._lock = threading.RLock()
        self._quota_used = 0

    @property
    def quota_used(self) -> int:
        return self._quota_used

    def _youtube(self):
        if self._service is None:
            self._service = build(
                "youtube",
                "v3",
                developerKey=self._api_key,
                http=httplib2.Http(timeout=self._timeout),
                cache_discovery=False,
            )
        return self._service

    def _execute(self, make_request, *, what: str, cost: int) -> dict[str, Any]:
        with self._lock:
            try:
                response = make_request(self._youtube()).execute()
            except HttpError as e:
                status = getattr(getattr(e, "resp", None), "status", None)
                reason = _error_reason(e)
                raise SourceError(
                    f"YouTube {what} failed (status={status}, reason={reason})",
                    reason=reason,
                    status=int(status) if status is not None else None,
                ) from e
            except (TimeoutError, OSError, httplib2.HttpLib2Error) as e:
                raise SourceError(f"YouTube {what} transport error: {e}", reason="transport") from e
            finally:
                self._quota_used += cost

        if not isinstance(response, dict):
            raise SourceError(f"YouTube {what} returned a non-object payload")
        err = response.get("error")
        if err:
            message = err.get("message") if isinstance(err, dict) else str(err)
            raise SourceError(f"YouTube {what} error payload: {message}")
        return response

    def search(self, query: SearchQuery) -> list[str]:
        params: dict[str, Any] = {
            "part": "snippet",
            "type": "video",
            "order": query.order,
            "regionCode": query.region,
            "maxResults": max(1, min(int(query.max_results), self.MAX_SEARCH_RESULTS)),
        }
        if query.query:
            params["q"] = query.query
        if query.duration:
            params["videoDuration"] = query.duration
        if query.published_after:
            params["publishedAfter"] = query.published_after

        logger.debug("youtube search %s", query.label())
        response = self._execute(
            lambda yt: yt.search().list(**params),
            what="search",
            cost=self.QUOTA_SEARCH,
        )

        ids: list[str] = []
        for item in response.get("items") or []:
            rid = item.get("id") if isinstance(item, dict) else None
            vid = rid.get("videoId") if isinstance(rid, dict) else None
            if vid:
                ids.append(str(vid))
        logger.info("youtube search %s -> %d ids", query.label(), len(ids))
        return ids

    def get_details(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        if len(ids) > self.MAX_BATCH_SIZE:
            raise ValueError(f"at most {self.MAX_BATCH_SIZE} ids per details call, got {len(ids)}")

        response = self._execute(
            lambda yt: yt.videos().list(
                part="snippet,contentDetails,statistics",
                id=",".join(ids),
            ),
            what="videos",
            cost=self.QUOTA_VIDEOS,
        )
        items = [it for it in (response.get("items") or []) if isinstance(it, dict)]
        logger.debug("youtube videos: requested=%d returned=%d", len(ids), len(items))
        return items
