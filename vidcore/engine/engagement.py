"""
Policy layer over the ledger and CounterEngine: who may like, coin,
favorite, watch, follow and comment on what.
"""
from __future__ import annotations

from typing import Dict, List, Optional
import logging
import sqlite3

from vidcore.app.config import settings
from vidcore.app.db import transaction
from vidcore.engine import catalog, ledger
from vidcore.engine.catalog import Viewer, VideoRow
from vidcore.engine.counters import CounterEngine
from vidcore.engine.errors import Forbidden, InvalidArgument, NotFound
from vidcore.engine.ledger import EdgeKind

logger = logging.getLogger(__name__)


def check_may_engage(conn: sqlite3.Connection, viewer: Viewer, video_id: int, now: Optional[int] = None) -> VideoRow:
    """
    Owners can't engage with their own videos. Superusers can engage with
    anything else; regular users only with public, reviewed videos.
    """
    video = catalog.get_video(conn, video_id)
    if video.owner == viewer.mid:
        raise Forbidden("owners can't engage with their own videos")
    if viewer.elevated:
        return video
    if not video.is_public(catalog.resolve_now(now)) or not video.reviewed:
        raise Forbidden(f"video {video_id} is not open for engagement")
    return video


def like_video(conn: sqlite3.Connection, engine: CounterEngine, viewer: Viewer, video_id: int) -> bool:
    check_may_engage(conn, viewer, video_id)
    return engine.toggle(EdgeKind.LIKE, viewer.mid, video_id)


def collect_video(conn: sqlite3.Connection, engine: CounterEngine, viewer: Viewer, video_id: int) -> bool:
    check_may_engage(conn, viewer, video_id)
    return engine.toggle(EdgeKind.FAVORITE, viewer.mid, video_id)


def coin_video(conn: sqlite3.Connection, engine: CounterEngine, viewer: Viewer, video_id: int) -> bool:
    """A coin can't be taken back: insert-only, spends one of the viewer's coins."""
    check_may_engage(conn, viewer, video_id)
    return engine.add(EdgeKind.COIN, viewer.mid, video_id, charge_coin=True)


def watch_video(
    conn: sqlite3.Connection,
    engine: CounterEngine,
    viewer: Viewer,
    video_id: int,
    seconds: float,
    now: Optional[int] = None,
):
    video = catalog.get_video(conn, video_id)
    if not catalog.can_see_video(viewer, video, now):
        raise Forbidden(f"video {video_id} is not visible to user {viewer.mid}")
    return engine.record_view(viewer.mid, video_id, seconds)


def follow(conn: sqlite3.Connection, viewer: Viewer, followee: int) -> bool:
    """Toggle; True = now following."""
    if followee == viewer.mid:
        raise InvalidArgument("users can't follow themselves")

    with transaction(conn):
        ledger.require_user(conn, viewer.mid)
        ledger.require_user(conn, followee)
        if ledger.remove_edge(conn, EdgeKind.FOLLOW, viewer.mid, followee):
            return False
        ledger.add_edge(conn, EdgeKind.FOLLOW, viewer.mid, followee)
    return True


# danmu

def send_danmu(
    conn: sqlite3.Connection,
    engine: CounterEngine,
    viewer: Viewer,
    video_id: int,
    content: str,
    display_time: float,
    now: Optional[int] = None,
) -> int:
    if not content:
        raise InvalidArgument("danmu content must not be empty")
    if len(content) > settings.max_danmu_length:
        logger.warning("danmu too long (%d chars) from user %d", len(content), viewer.mid)
        raise InvalidArgument(f"danmu content longer than {settings.max_danmu_length}")

    video = catalog.get_video(conn, video_id)
    if not video.is_public(catalog.resolve_now(now)):
        raise NotFound(f"video {video_id} not found")
    if display_time < 0 or display_time > video.duration:
        logger.warning("danmu time %s outside video %d (duration %s)", display_time, video_id, video.duration)
        raise InvalidArgument(f"display time must be within [0, {video.duration}]")
    if not ledger.has_watched(conn, viewer.mid, video_id):
        raise Forbidden(f"user {viewer.mid} has not watched video {video_id}")

    return engine.add_danmu(viewer.mid, video_id, display_time, content, posted_at=now)


def display_danmu(
    conn: sqlite3.Connection,
    video_id: int,
    start: float,
    end: float,
    filtered: bool = False,
    now: Optional[int] = None,
) -> List[int]:
    """
    Danmu ids shown in [start, end], ordered by display time.
    filtered keeps one entry per distinct text: the earliest posted.
    """
    if start < 0 or end < 0 or start > end:
        raise InvalidArgument(f"bad time window [{start}, {end}]")

    video = catalog.get_video(conn, video_id)
    if not video.is_public(catalog.resolve_now(now)):
        raise NotFound(f"video {video_id} not found")
    if end > video.duration:
        raise InvalidArgument(f"window end {end} past video duration {video.duration}")

    rows = ledger.danmu_in_window(conn, video_id, start, end)
    if not filtered:
        return [int(r["id"]) for r in rows]

    first: Dict[str, sqlite3.Row] = {}
    for r in rows:
        kept = first.get(r["content"])
        if kept is None or (r["post_time"], r["id"]) < (kept["post_time"], kept["id"]):
            first[r["content"]] = r
    keep_ids = {int(r["id"]) for r in first.values()}
    return [int(r["id"]) for r in rows if int(r["id"]) in keep_ids]


def like_danmu(conn: sqlite3.Connection, viewer: Viewer, danmu_id: int) -> bool:
    with transaction(conn):
        ledger.require_user(conn, viewer.mid)
        entry = ledger.get_danmu(conn, danmu_id)
        if not ledger.has_watched(conn, viewer.mid, entry.video_id):
            raise Forbidden(f"user {viewer.mid} has not watched video {entry.video_id}")
        return ledger.toggle_danmu_like(conn, viewer.mid, danmu_id)
