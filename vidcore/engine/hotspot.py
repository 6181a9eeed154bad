from __future__ import annotations

from collections import Counter
from typing import Iterable, Set
import math
import sqlite3

from vidcore.engine import ledger
from vidcore.engine.errors import InvalidArgument

DEFAULT_BUCKET_WIDTH = 10


def bucket_counts(display_times: Iterable[float], bucket_width: int = DEFAULT_BUCKET_WIDTH) -> Counter:
    if bucket_width <= 0:
        raise InvalidArgument(f"bucket width must be positive, got {bucket_width}")
    return Counter(int(math.floor(t / bucket_width)) for t in display_times)


def densest_buckets(display_times: Iterable[float], bucket_width: int = DEFAULT_BUCKET_WIDTH) -> Set[int]:
    """Every bucket tied at the maximum count; empty input gives an empty set."""
    counts = bucket_counts(display_times, bucket_width)
    if not counts:
        return set()
    peak = max(counts.values())
    return {bucket for bucket, n in counts.items() if n == peak}


def hotspot(conn: sqlite3.Connection, video_id: int, bucket_width: int = DEFAULT_BUCKET_WIDTH) -> Set[int]:
    ledger.require_video(conn, video_id)
    return densest_buckets(ledger.danmu_times(conn, video_id), bucket_width)
