"""
Engagement fact store.

Plain functions over an open sqlite connection. Nothing here touches the
denormalised counters; callers that mutate video-scoped facts go through
CounterEngine so counts move in the same transaction.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple
import sqlite3

from vidcore.engine.errors import Conflict, NotFound


class EdgeKind(str, Enum):
    LIKE = "like"
    COIN = "coin"
    FAVORITE = "favorite"
    FOLLOW = "follow"

    @property
    def is_video_edge(self) -> bool:
        return self is not EdgeKind.FOLLOW


# kind -> (table, actor column, target column, counter column)
_EDGE_TABLES: Dict[EdgeKind, tuple] = {
    EdgeKind.LIKE: ("like_video", "mid", "video_id", "like_count"),
    EdgeKind.COIN: ("coin_video", "mid", "video_id", "coin_count"),
    EdgeKind.FAVORITE: ("fav_video", "mid", "video_id", "fav_count"),
    EdgeKind.FOLLOW: ("follows", "follower", "followee", None),
}


def counter_column(kind: EdgeKind) -> Optional[str]:
    return _EDGE_TABLES[kind][3]


@dataclass
class DanmuEntry:
    id: int
    video_id: int
    mid: int
    display_time: float
    content: str
    posted_at: int
    liked_by: Set[int]


# existence checks

def user_exists(conn: sqlite3.Connection, mid: int) -> bool:
    row = conn.execute("SELECT 1 FROM users WHERE mid = ?", (mid,)).fetchone()
    return row is not None


def video_exists(conn: sqlite3.Connection, video_id: int) -> bool:
    row = conn.execute("SELECT 1 FROM videos WHERE id = ?", (video_id,)).fetchone()
    return row is not None


def require_user(conn: sqlite3.Connection, mid: int) -> None:
    if not user_exists(conn, mid):
        raise NotFound(f"user {mid} not found")


def require_video(conn: sqlite3.Connection, video_id: int) -> None:
    if not video_exists(conn, video_id):
        raise NotFound(f"video {video_id} not found")


# existence-only edges

def edge_exists(conn: sqlite3.Connection, kind: EdgeKind, actor: int, target: int) -> bool:
    table, a_col, t_col, _ = _EDGE_TABLES[kind]
    row = conn.execute(
        f"SELECT 1 FROM {table} WHERE {a_col} = ? AND {t_col} = ?",
        (actor, target),
    ).fetchone()
    return row is not None


def add_edge(conn: sqlite3.Connection, kind: EdgeKind, actor: int, target: int) -> None:
    table, a_col, t_col, _ = _EDGE_TABLES[kind]
    try:
        conn.execute(
            f"INSERT INTO {table}({a_col}, {t_col}) VALUES(?, ?)",
            (actor, target),
        )
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
            raise Conflict(f"{kind.value} edge ({actor}, {target}) already exists") from e
        raise


def remove_edge(conn: sqlite3.Connection, kind: EdgeKind, actor: int, target: int) -> bool:
    table, a_col, t_col, _ = _EDGE_TABLES[kind]
    cur = conn.execute(
        f"DELETE FROM {table} WHERE {a_col} = ? AND {t_col} = ?",
        (actor, target),
    )
    return cur.rowcount > 0


def count_edges(conn: sqlite3.Connection, kind: EdgeKind, target: int) -> int:
    table, _, t_col, _ = _EDGE_TABLES[kind]
    row = conn.execute(
        f"SELECT COUNT(*) AS c FROM {table} WHERE {t_col} = ?",
        (target,),
    ).fetchone()
    return int(row["c"]) if row else 0


# views

def get_view_time(conn: sqlite3.Connection, actor: int, video_id: int) -> Optional[float]:
    row = conn.execute(
        "SELECT view_time FROM view_video WHERE mid = ? AND video_id = ?",
        (actor, video_id),
    ).fetchone()
    return float(row["view_time"]) if row else None


def has_watched(conn: sqlite3.Connection, actor: int, video_id: int) -> bool:
    return get_view_time(conn, actor, video_id) is not None


def insert_view(conn: sqlite3.Connection, actor: int, video_id: int, seconds: float) -> None:
    try:
        conn.execute(
            "INSERT INTO view_video(mid, video_id, view_time) VALUES(?, ?, ?)",
            (actor, video_id, seconds),
        )
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
            raise Conflict(f"view ({actor}, {video_id}) already exists") from e
        raise


def update_view(conn: sqlite3.Connection, actor: int, video_id: int, seconds: float) -> None:
    conn.execute(
        "UPDATE view_video SET view_time = ? WHERE mid = ? AND video_id = ?",
        (seconds, actor, video_id),
    )


def view_totals(conn: sqlite3.Connection, video_id: int) -> Tuple[int, float]:
    """(number of viewers, total watched seconds) straight from the view facts."""
    row = conn.execute(
        "SELECT COUNT(*) AS n, COALESCE(SUM(view_time), 0) AS total FROM view_video WHERE video_id = ?",
        (video_id,),
    ).fetchone()
    return int(row["n"]), float(row["total"])


# danmu

def insert_danmu(
    conn: sqlite3.Connection,
    actor: int,
    video_id: int,
    display_time: float,
    content: str,
    posted_at: int,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO danmu(video_id, mid, dis_time, content, post_time)
        VALUES(?,?,?,?,?)
        """,
        (video_id, actor, display_time, content, posted_at),
    )
    return int(cur.lastrowid)


def get_danmu(conn: sqlite3.Connection, danmu_id: int) -> DanmuEntry:
    row = conn.execute(
        "SELECT id, video_id, mid, dis_time, content, post_time FROM danmu WHERE id = ?",
        (danmu_id,),
    ).fetchone()
    if not row:
        raise NotFound(f"danmu {danmu_id} not found")
    liked = conn.execute(
        "SELECT mid FROM danmu_likes WHERE danmu_id = ?",
        (danmu_id,),
    ).fetchall()
    return DanmuEntry(
        id=int(row["id"]),
        video_id=int(row["video_id"]),
        mid=int(row["mid"]),
        display_time=float(row["dis_time"]),
        content=str(row["content"]),
        posted_at=int(row["post_time"]),
        liked_by={int(r["mid"]) for r in liked},
    )


def danmu_times(conn: sqlite3.Connection, video_id: int) -> List[float]:
    rows = conn.execute(
        "SELECT dis_time FROM danmu WHERE video_id = ?",
        (video_id,),
    ).fetchall()
    return [float(r["dis_time"]) for r in rows]


def danmu_in_window(
    conn: sqlite3.Connection,
    video_id: int,
    start: float,
    end: float,
) -> List[sqlite3.Row]:
    return conn.execute(
        """
        SELECT id, content, dis_time, post_time
        FROM danmu
        WHERE video_id = ? AND dis_time BETWEEN ? AND ?
        ORDER BY dis_time ASC, id ASC
        """,
        (video_id, start, end),
    ).fetchall()


def count_danmu(conn: sqlite3.Connection, video_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS c FROM danmu WHERE video_id = ?",
        (video_id,),
    ).fetchone()
    return int(row["c"]) if row else 0


def toggle_danmu_like(conn: sqlite3.Connection, actor: int, danmu_id: int) -> bool:
    cur = conn.execute(
        "DELETE FROM danmu_likes WHERE mid = ? AND danmu_id = ?",
        (actor, danmu_id),
    )
    if cur.rowcount > 0:
        return False
    conn.execute(
        "INSERT INTO danmu_likes(mid, danmu_id) VALUES(?, ?)",
        (actor, danmu_id),
    )
    return True


# cascade

def delete_video_facts(conn: sqlite3.Connection, video_id: int) -> Dict[str, int]:
    """
    Delete every fact that references the video (children first, foreign keys are on).
    Returns rows removed per table, for logging.
    """
    removed: Dict[str, int] = {}
    removed["danmu_likes"] = conn.execute(
        "DELETE FROM danmu_likes WHERE danmu_id IN (SELECT id FROM danmu WHERE video_id = ?)",
        (video_id,),
    ).rowcount
    for table in ("danmu", "like_video", "coin_video", "fav_video", "view_video", "video_counters"):
        removed[table] = conn.execute(
            f"DELETE FROM {table} WHERE video_id = ?",
            (video_id,),
        ).rowcount
    return removed
