from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from conftest import FakeSource, video_item
from vibestream.errors import SearchFailedError, StoreWriteError
from vibestream.models import SearchQuery, VideoRecord
from vibestream.pipeline import IngestionPipeline
from vibestream.repositories import SqliteRepository

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def _pipeline(source, repo, **kw) -> IngestionPipeline:
    kw.setdefault("clock", lambda: NOW)
    return IngestionPipeline(source, repo, **kw)


def _dump(repo: SqliteRepository) -> list[dict]:
    return repo.list_recent(limit=50).items


def test_duplicate_search_hits_yield_one_record_each(repo: SqliteRepository) -> None:
    source = FakeSource(
        {"shorts": ["a", "b", "a"]},
        {"a": video_item("a"), "b": video_item("b")},
    )
    res = _pipeline(source, repo).run_keywords(["shorts"], "in")

    assert res.upserted == 2
    assert [r.id for r in res.records] == ["a", "b"]
    assert repo.count() == 2
    # One details lookup per distinct id.
    assert source.detail_calls == [["a", "b"]]
    assert source.search_calls[0].region == "IN"


def test_missing_details_are_dropped_without_error(repo: SqliteRepository) -> None:
    ids = ["v1", "v2", "v3", "v4", "v5"]
    source = FakeSource({"k": ids}, {vid: video_item(vid) for vid in ("v1", "v3", "v5")})

    res = _pipeline(source, repo).run_keywords(["k"], "US")

    assert res.searched == 5
    assert res.hydrated == 3
    assert res.upserted == 3
    assert sorted(r["id"] for r in _dump(repo)) == ["v1", "v3", "v5"]


def test_running_twice_is_idempotent(repo: SqliteRepository) -> None:
    source = FakeSource(
        {"x": ["a", "b"], "y": ["b", "c"]},
        {vid: video_item(vid) for vid in "abc"},
    )
    pipeline = _pipeline(source, repo)

    pipeline.run_keywords(["x", "y"], "IN")
    once = _dump(repo)
    pipeline.run_keywords(["x", "y"], "IN")
    twice = _dump(repo)

    assert once == twice
    assert len(twice) == 3


def test_same_id_from_two_queries_is_written_once() -> None:
    class _CollectingRepo:
        backend_name = "memory"

        def __init__(self):
            self.writes: list[VideoRecord] = []

        def upsert(self, record, *, updated_at=None):
            self.writes.append(record)

    repo = _CollectingRepo()
    source = FakeSource({"q": ["a"]}, {"a": video_item("a")})
    res = _pipeline(source, repo).run([SearchQuery(region="IN", query="q"), SearchQuery(region="IN", query="q")])

    assert res.searched == 2
    assert res.normalized == 2
    assert res.deduped == 1
    assert [r.id for r in repo.writes] == ["a"]


def test_failed_query_is_skipped(repo: SqliteRepository) -> None:
    source = FakeSource(
        {"good": ["a"], "bad": ["b"]},
        {"a": video_item("a"), "b": video_item("b")},
        fail_queries={"bad"},
    )
    res = _pipeline(source, repo).run_keywords(["bad", "good"], "IN")

    assert res.search_failures == 1
    assert res.upserted == 1
    assert repo.get("a") is not None
    assert repo.get("b") is None


def test_all_queries_failing_raises(repo: SqliteRepository) -> None:
    source = FakeSource({"a": ["x"]}, {}, fail_queries={"a", "b"})
    with pytest.raises(SearchFailedError):
        _pipeline(source, repo).run_keywords(["a", "b"], "IN")


def test_no_results_is_not_an_error(repo: SqliteRepository) -> None:
    source = FakeSource({}, {})
    res = _pipeline(source, repo).run_keywords(["nothing"], "IN")
    assert res.upserted == 0
    assert source.detail_calls == []


def test_details_are_chunked_by_source_batch_size(repo: SqliteRepository) -> None:
    ids = [f"id{i:03d}" for i in range(120)]
    source = FakeSource({"big": ids}, {vid: video_item(vid) for vid in ids})

    res = _pipeline(source, repo, max_batch_items=None).run_keywords(["big"], "IN")

    assert [len(c) for c in source.detail_calls] == [50, 50, 20]
    assert res.upserted == 120


def test_failed_details_batch_is_skipped(repo: SqliteRepository) -> None:
    source = FakeSource({"k": ["a"]}, {"a": video_item("a")}, fail_details=True)
    res = _pipeline(source, repo).run_keywords(["k"], "IN")
    assert res.hydrated == 0
    assert res.upserted == 0


def test_items_without_id_are_skipped(repo: SqliteRepository) -> None:
    class _Source(FakeSource):
        def get_details(self, ids):
            return [video_item("ok"), {"snippet": {"title": "no id"}}]

    res = _pipeline(_Source({"k": ["ok", "ghost"]}), repo).run_keywords(["k"], "IN")
    assert res.upserted == 1
    assert repo.count() == 1


def test_cap_keeps_first_items_after_dedup(repo: SqliteRepository) -> None:
    ids = [f"v{i:02d}" for i in range(40)]
    source = FakeSource({"k": ids}, {vid: video_item(vid) for vid in ids})

    res = _pipeline(source, repo, max_batch_items=30).run_keywords(["k"], "IN")

    assert res.deduped == 30
    assert [r.id for r in res.records] == ids[:30]


def test_store_write_failure_does_not_abort_other_writes(repo: SqliteRepository) -> None:
    class _FlakyRepo:
        backend_name = "flaky"

        def __init__(self, inner):
            self.inner = inner

        def upsert(self, record, *, updated_at=None):
            if record.id == "b":
                raise StoreWriteError(record.id, "disk full")
            self.inner.upsert(record, updated_at=updated_at)

    source = FakeSource({"k": ["a", "b", "c"]}, {vid: video_item(vid) for vid in "abc"})
    res = _pipeline(source, _FlakyRepo(repo), write_concurrency=3).run_keywords(["k"], "IN")

    assert res.failed == 1
    assert res.upserted == 2
    assert [r.id for r in res.records] == ["a", "c"]
    assert repo.get("a") and repo.get("c")


def test_unexpected_repository_error_counts_as_failed(repo: SqliteRepository) -> None:
    class _BrokenRepo:
        backend_name = "broken"

        def upsert(self, record, *, updated_at=None):
            if record.id == "b":
                raise RuntimeError("connection reset")
            repo.upsert(record, updated_at=updated_at)

    source = FakeSource({"k": ["a", "b", "c"]}, {vid: video_item(vid) for vid in "abc"})
    res = _pipeline(source, _BrokenRepo()).run_keywords(["k"], "IN")

    assert res.failed == 1
    assert res.upserted == 2
    assert repo.get("b") is None


class _InFlightRepo:
    """Counts concurrent upserts; each write holds its slot briefly."""

    backend_name = "tracking"

    def __init__(self):
        self._lock = threading.Lock()
        self._pause = threading.Event()
        self.active = 0
        self.peak = 0
        self.done: list[str] = []

    def upsert(self, record, *, updated_at=None):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        self._pause.wait(0.05)
        with self._lock:
            self.active -= 1
            self.done.append(record.id)


@pytest.mark.parametrize("concurrency", [1, 3])
def test_writes_are_bounded_and_settled_before_return(concurrency: int) -> None:
    ids = [f"w{i:02d}" for i in range(10)]
    source = FakeSource({"k": ids}, {vid: video_item(vid) for vid in ids})
    tracker = _InFlightRepo()

    res = _pipeline(source, tracker, write_concurrency=concurrency).run_keywords(["k"], "IN")

    assert tracker.peak <= concurrency
    if concurrency > 1:
        assert tracker.peak > 1
    assert tracker.active == 0
    assert sorted(tracker.done) == ids
    assert res.upserted == 10


def test_keyword_limit_is_capped_at_25(repo: SqliteRepository) -> None:
    source = FakeSource({}, {})
    _pipeline(source, repo).run_keywords(["k", "", "  "], "gb", limit=500)
    assert len(source.search_calls) == 1
    q = source.search_calls[0]
    assert q.max_results == 25
    assert q.order == "date"
    assert q.duration == "short"
    assert q.region == "GB"


def test_trending_query_shape(repo: SqliteRepository) -> None:
    source = FakeSource({None: ["t1"]}, {"t1": video_item("t1")})
    res = _pipeline(source, repo).run_trending("us", limit=80)

    q = source.search_calls[0]
    assert q.query is None
    assert q.order == "viewCount"
    assert q.max_results == 50
    assert q.published_after == "2026-10-17T12:00:00Z"
    assert [r.id for r in res.records] == ["t1"]
    assert repo.get("t1")["region"] == "US"


def test_scheduled_run_continues_after_region_failure(repo: SqliteRepository) -> None:
    combined = "trending shorts | viral shorts"
    source = FakeSource(
        {combined: ["a", "b"]},
        {"a": video_item("a"), "b": video_item("b")},
        fail_regions={"US"},
    )
    outcome = _pipeline(source, repo).run_scheduled(["in", "US", "gb"], ["trending shorts", "viral shorts"])

    assert list(outcome) == ["IN", "US", "GB"]
    assert outcome["IN"]["ok"] is True
    assert outcome["IN"]["upserted"] == 2
    assert outcome["US"]["ok"] is False
    assert outcome["GB"]["ok"] is True
    assert [q.query for q in source.search_calls] == [combined] * 3
    assert repo.count() == 2
