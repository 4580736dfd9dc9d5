"""Search -> hydrate -> normalize -> dedupe -> upsert.

Failures are contained at the smallest unit that failed: a search query, a
details batch, one item, one write. Only configuration errors and a run in
which every search query failed reach the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .dedupe import dedupe_records
from .errors import NormalizationError, SearchFailedError, SourceError, StoreWriteError
from .models import SearchQuery, VideoRecord
from .normalizer import normalize_item, utc_now_iso
from .repositories import VideoRepository
from .youtube import VideoSource

logger = logging.getLogger(__name__)

# Per-query result caps for manual and trending fetches.
KEYWORD_QUERY_CAP = 25
TRENDING_QUERY_CAP = 50


@dataclass
class RunResult:
    searched: int = 0
    search_failures: int = 0
    hydrated: int = 0
    normalized: int = 0
    skipped: int = 0
    deduped: int = 0
    upserted: int = 0
    failed: int = 0
    records: list[VideoRecord] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {
            "searched": self.searched,
            "search_failures": self.search_failures,
            "hydrated": self.hydrated,
            "normalized": self.normalized,
            "skipped": self.skipped,
            "deduped": self.deduped,
            "upserted": self.upserted,
            "failed": self.failed,
        }


def _chunks(items: Sequence[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionPipeline:
    def __init__(
        self,
        source: VideoSource,
        repository: VideoRepository,
        *,
        max_batch_items: int | None = 30,
        write_concurrency: int = 4,
        short_max_seconds: int = 60,
        trending_window_hours: int = 48,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.repository = repository
        self.max_batch_items = max_batch_items
        self.write_concurrency = max(1, int(write_concurrency))
        self.short_max_seconds = short_max_seconds
        self.trending_window_hours = trending_window_hours
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, source: VideoSource, repository: VideoRepository) -> "IngestionPipeline":
        return cls(
            source,
            repository,
            max_batch_items=settings.VS_MAX_BATCH_ITEMS,
            write_concurrency=settings.VS_WRITE_CONCURRENCY,
            short_max_seconds=settings.VS_SHORT_MAX_SECONDS,
            trending_window_hours=settings.VS_TRENDING_WINDOW_HOURS,
        )

    # ── steps ──────────────────────────────────────────────────────────────

    def search(self, queries: Sequence[SearchQuery], result: RunResult) -> list[str]:
        ids: list[str] = []
        for q in queries:
            try:
                found = self.source.search(q)
            except SourceError as e:
                result.search_failures += 1
                logger.error("search failed (%s): %s", q.label(), e)
                continue
            ids.extend(found)

        result.searched = len(ids)
        if queries and result.search_failures == len(queries):
            raise SearchFailedError(f"all {len(queries)} search queries failed")
        return ids

    def hydrate(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        """Fetch details for `ids`, keyed by video id.

        Ids the details call does not return are simply absent.
        """

        # Same id from several queries only needs one details lookup.
        unique = list(dict.fromkeys(ids))
        size = max(1, int(getattr(self.source, "MAX_BATCH_SIZE", 50)))
        details: dict[str, dict[str, Any]] = {}
        for batch in _chunks(unique, size):
            try:
                items = self.source.get_details(batch)
            except SourceError as e:
                logger.error("details batch failed (%d ids, first=%s): %s", len(batch), batch[0], e)
                continue
            for item in items:
                vid = _item_id(item)
                if vid:
                    details[vid] = item
        return details

    def normalize(
        self, items: Iterable[Any], result: RunResult, *, now: datetime, region: str | None
    ) -> list[VideoRecord]:
        out: list[VideoRecord] = []
        for item in items:
            try:
                out.append(
                    normalize_item(item, now=now, short_max_seconds=self.short_max_seconds, region=region)
                )
            except NormalizationError as e:
                result.skipped += 1
                logger.warning("skipped item: %s", e)
        return out

    def upsert(self, records: Sequence[VideoRecord], result: RunResult, *, now: datetime) -> list[VideoRecord]:
        if not records:
            return []
        updated_at = utc_now_iso(now)
        saved: dict[str, VideoRecord] = {}
        workers = min(self.write_concurrency, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upsert") as pool:
            futures = {pool.submit(self.repository.upsert, rec, updated_at=updated_at): rec for rec in records}
            for fut in as_completed(futures):
                rec = futures[fut]
                try:
                    fut.result()
                except StoreWriteError as e:
                    result.failed += 1
                    logger.error("store write failed id=%s: %s", rec.id, e)
                    continue
                except Exception as e:
                    result.failed += 1
                    logger.exception("store write failed id=%s: %s", rec.id, e)
                    continue
                saved[rec.id] = rec
        result.upserted = len(saved)
        # Report in dedup order, not completion order.
        return [r for r in records if r.id in saved]

    # ── runs ───────────────────────────────────────────────────────────────

    def run(self, queries: Sequence[SearchQuery], *, region: str | None = None) -> RunResult:
        result = RunResult()
        now = self._clock()

        ids = self.search(queries, result)
        details = self.hydrate(ids) if ids else {}
        result.hydrated = len(details)

        # One item per search hit, in search order; repeats are collapsed by dedupe.
        items = [details[vid] for vid in ids if vid in details]
        records = self.normalize(items, result, now=now, region=region)
        result.normalized = len(records)

        unique = dedupe_records(records, max_items=self.max_batch_items)
        result.deduped = len(unique)

        result.records = self.upsert(unique, result, now=now)
        logger.info("ingestion run done: %s", result.summary())
        return result

    def run_keywords(self, keywords: Sequence[str], region: str, limit: int = KEYWORD_QUERY_CAP) -> RunResult:
        cap = max(1, min(int(limit), KEYWORD_QUERY_CAP))
        region = region.upper()
        queries = [
            SearchQuery(region=region, max_results=cap, query=kw, duration="short", order="date")
            for kw in keywords
            if str(kw or "").strip()
        ]
        logger.info("manual fetch: region=%s keywords=%s", region, [q.query for q in queries])
        return self.run(queries, region=region)

    def run_trending(self, region: str, limit: int = 20) -> RunResult:
        cap = max(1, min(int(limit), TRENDING_QUERY_CAP))
        region = region.upper()
        since = self._clock() - timedelta(hours=self.trending_window_hours)
        query = SearchQuery(
            region=region,
            max_results=cap,
            duration="short",
            order="viewCount",
            published_after=since.strftime("%Y-%m-%dT%H:%M:%SZ"),
        )
        return self.run([query], region=region)

    def run_scheduled(self, regions: Sequence[str], keywords: Sequence[str]) -> dict[str, dict[str, Any]]:
        """One auto-fetch pass, region by region.

        A region that fails (quota, transport, store) is logged and the loop
        moves on to the next one.
        """

        combined = " | ".join(k.strip() for k in keywords if str(k or "").strip())
        outcome: dict[str, dict[str, Any]] = {}
        for region in regions:
            region = region.upper()
            logger.info("auto fetch region=%s", region)
            query = SearchQuery(
                region=region,
                max_results=KEYWORD_QUERY_CAP,
                query=combined or None,
                duration="short",
                order="date",
            )
            try:
                res = self.run([query], region=region)
            except Exception as e:
                logger.exception("auto fetch region=%s failed: %s", region, e)
                outcome[region] = {"ok": False, "error": str(e)}
                continue
            logger.info("auto fetch region=%s saved=%d", region, res.upserted)
            outcome[region] = {"ok": True, **res.summary()}
        return outcome


def _item_id(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    rid = item.get("id")
    if isinstance(rid, dict):
        rid = rid.get("videoId")
    return str(rid) if rid else None
