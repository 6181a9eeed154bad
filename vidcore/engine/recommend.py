from __future__ import annotations

from typing import List, Optional, Set
import logging
import sqlite3
import time

from vidcore.engine import ledger
from vidcore.engine.paging import check_page, offset, page_slice

logger = logging.getLogger(__name__)

RELATED_LIMIT = 5


def trending(conn: sqlite3.Connection, page_size: int, page_num: int) -> List[int]:
    """
    All videos by composite score; ties on raw view count, then id so pages
    never overlap or skip.
    """
    check_page(page_size, page_num)
    rows = conn.execute(
        """
        SELECT video_id
        FROM video_counters
        ORDER BY score DESC, view_count DESC, video_id ASC
        LIMIT ?
        OFFSET ?
        """,
        (page_size, offset(page_size, page_num)),
    ).fetchall()
    return [int(r["video_id"]) for r in rows]


def mutual_friends(conn: sqlite3.Connection, mid: int) -> Set[int]:
    rows = conn.execute(
        """
        SELECT f1.followee AS mid
        FROM follows f1
        JOIN follows f2
          ON f2.follower = f1.followee
         AND f2.followee = f1.follower
        WHERE f1.follower = ?
        """,
        (mid,),
    ).fetchall()
    return {int(r["mid"]) for r in rows}


def _friend_video_candidates(conn: sqlite3.Connection, mid: int, friends: Set[int], now: int) -> List[int]:
    q_marks = ",".join(["?"] * len(friends))
    rows = conn.execute(
        f"""
        SELECT
          vv.video_id AS video_id,
          COUNT(DISTINCT vv.mid) AS friend_views,
          u.level AS owner_level,
          COALESCE(v.public_time, v.commit_time) AS shown_at
        FROM view_video vv
        JOIN videos v ON v.id = vv.video_id
        JOIN users u ON u.mid = v.owner
        WHERE vv.mid IN ({q_marks})
          AND vv.video_id NOT IN (SELECT video_id FROM view_video WHERE mid = ?)
          AND (v.owner = ? OR v.public_time IS NULL OR v.public_time <= ?)
        GROUP BY vv.video_id
        ORDER BY friend_views DESC, owner_level DESC, shown_at DESC, vv.video_id ASC
        """,
        (*sorted(friends), mid, mid, now),
    ).fetchall()
    return [int(r["video_id"]) for r in rows]


def for_user(
    conn: sqlite3.Connection,
    mid: int,
    page_size: int,
    page_num: int,
    now: Optional[int] = None,
) -> List[int]:
    """
    Videos watched by mutual-follow friends that the user hasn't watched.
    Users without friends, or whose friends give no candidates, get trending.
    """
    check_page(page_size, page_num)
    ledger.require_user(conn, mid)
    now = int(time.time()) if now is None else int(now)

    friends = mutual_friends(conn, mid)
    if not friends:
        return trending(conn, page_size, page_num)

    candidates = _friend_video_candidates(conn, mid, friends, now)
    if not candidates:
        logger.debug("no friend videos for user %d, falling back to trending", mid)
        return trending(conn, page_size, page_num)

    return page_slice(candidates, page_size, page_num)


def friend_suggestions(conn: sqlite3.Connection, mid: int, page_size: int, page_num: int) -> List[int]:
    """
    Users who follow the same people as mid, by number of shared followees.
    mid itself and anyone mid already follows are left out.
    """
    check_page(page_size, page_num)
    ledger.require_user(conn, mid)
    rows = conn.execute(
        """
        WITH mine AS (
          SELECT followee FROM follows WHERE follower = ?
        )
        SELECT f.follower AS mid, COUNT(*) AS shared, u.level AS level
        FROM follows f
        JOIN mine m ON m.followee = f.followee
        JOIN users u ON u.mid = f.follower
        WHERE f.follower <> ?
          AND f.follower NOT IN (SELECT followee FROM mine)
        GROUP BY f.follower
        ORDER BY shared DESC, level DESC, f.follower ASC
        LIMIT ?
        OFFSET ?
        """,
        (mid, mid, page_size, offset(page_size, page_num)),
    ).fetchall()
    return [int(r["mid"]) for r in rows]


def related(conn: sqlite3.Connection, video_id: int, limit: int = RELATED_LIMIT) -> List[int]:
    """Videos most co-watched with video_id by the same viewers."""
    ledger.require_video(conn, video_id)
    rows = conn.execute(
        """
        SELECT vv.video_id AS video_id, COUNT(*) AS co_views
        FROM view_video vv
        WHERE vv.mid IN (SELECT mid FROM view_video WHERE video_id = ?)
          AND vv.video_id <> ?
        GROUP BY vv.video_id
        ORDER BY co_views DESC, vv.video_id ASC
        LIMIT ?
        """,
        (video_id, video_id, limit),
    ).fetchall()
    return [int(r["video_id"]) for r in rows]
