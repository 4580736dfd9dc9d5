from __future__ import annotations

from collections.abc import Iterable

from .models import VideoRecord


def dedupe_records(records: Iterable[VideoRecord], *, max_items: int | None = None) -> list[VideoRecord]:
    """Collapse records to one per id.

    - The last occurrence of an id supplies the field values.
    - Output keeps the position where each id was first seen.
    - The cap is applied after dedup: the first `max_items` ids survive.
      `None` or a non-positive cap means no limit.
    """

    by_id: dict[str, VideoRecord] = {}
    for rec in records:
        # Reassigning an existing key keeps its original insertion position.
        by_id[rec.id] = rec

    out = list(by_id.values())
    if max_items is not None and max_items > 0:
        out = out[:max_items]
    return out
