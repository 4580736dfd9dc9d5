from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from .errors import NormalizationError
from .models import VideoRecord
from .schemas import RawVideoItem

# Highest resolution first.
THUMBNAIL_PREFERENCE = ("maxres", "standard", "high", "medium", "default")

_ISO_DURATION = re.compile(
    r"^P(?!$)(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?=\d)(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def utc_now_iso(now: datetime | None = None) -> str:
    dt = now or datetime.now(timezone.utc)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(timespec="milliseconds") + "Z"


def parse_duration(value: object) -> int | None:
    """Parse an ISO-8601 duration ("PT1M5S", "P0D") into whole seconds.

    Returns None for anything that is not a valid duration.
    """

    s = str(value or "").strip().upper()
    if not s:
        return None
    m = _ISO_DURATION.match(s)
    if not m:
        return None
    parts = m.groupdict()
    total = float(parts["seconds"] or 0)
    total += int(parts["minutes"] or 0) * 60
    total += int(parts["hours"] or 0) * 3600
    total += int(parts["days"] or 0) * 86400
    total += int(parts["weeks"] or 0) * 7 * 86400
    return int(total)


def _to_count(value: object) -> int | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        n = int(s)
    except ValueError:
        return None
    return n if n >= 0 else None


def pick_thumbnail(thumbnails: dict[str, Any] | None) -> str:
    if not thumbnails:
        return ""
    for key in THUMBNAIL_PREFERENCE:
        thumb = thumbnails.get(key)
        url = getattr(thumb, "url", None)
        if url:
            return str(url)
    return ""


def normalize_item(
    item: object,
    *,
    now: datetime | None = None,
    short_max_seconds: int = 60,
    region: str | None = None,
) -> VideoRecord:
    """Map one raw search/videos item onto a VideoRecord.

    Only a missing identifier is an error; every other field has a fallback.
    """

    raw = RawVideoItem.model_validate(item)
    video_id = raw.video_id()
    if not video_id:
        raise NormalizationError("item has no usable video id")

    sn = raw.snippet
    st = raw.statistics
    ingested_at = utc_now_iso(now)

    seconds = parse_duration(raw.contentDetails.duration)
    is_short = seconds is not None and 0 < seconds <= short_max_seconds

    return VideoRecord(
        id=video_id,
        title=sn.title or "",
        description=sn.description or "",
        channel_name=sn.channelTitle or "",
        published_at=sn.publishedAt or ingested_at,
        thumbnail_url=pick_thumbnail(sn.thumbnails),
        view_count=_to_count(st.viewCount),
        like_count=_to_count(st.likeCount),
        is_short=is_short,
        duration_seconds=seconds,
        region=region,
        created_at=ingested_at,
    )
