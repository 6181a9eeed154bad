from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import logging
import math
import sqlite3
import time

from vidcore.app.config import settings
from vidcore.app.db import transaction
from vidcore.engine import idcodec, ledger
from vidcore.engine.counters import CounterEngine, VideoCounters, create_counters, read_counters
from vidcore.engine.errors import Conflict, Forbidden, InvalidArgument, NotFound

logger = logging.getLogger(__name__)


class Identity(str, Enum):
    USER = "USER"
    SUPERUSER = "SUPERUSER"


@dataclass(frozen=True)
class Viewer:
    mid: int
    identity: Identity = Identity.USER

    @property
    def elevated(self) -> bool:
        return self.identity is Identity.SUPERUSER


@dataclass
class VideoRow:
    id: int
    owner: int
    owner_name: str
    title: str
    description: str
    duration: float
    commit_time: int
    public_time: Optional[int]
    reviewer: Optional[int]
    review_time: Optional[int]

    @property
    def code(self) -> str:
        return idcodec.encode(self.id)

    def is_public(self, now: int) -> bool:
        return self.public_time is None or self.public_time <= now

    @property
    def reviewed(self) -> bool:
        return self.reviewer is not None


_VIDEO_SELECT = """
    SELECT v.id, v.owner, u.name AS owner_name, v.title, v.description, v.duration,
           v.commit_time, v.public_time, v.reviewer, v.review_time
    FROM videos v
    JOIN users u ON u.mid = v.owner
"""


def _row_to_video(r: sqlite3.Row) -> VideoRow:
    return VideoRow(
        id=int(r["id"]),
        owner=int(r["owner"]),
        owner_name=str(r["owner_name"]),
        title=str(r["title"]),
        description=str(r["description"] or ""),
        duration=float(r["duration"]),
        commit_time=int(r["commit_time"]),
        public_time=int(r["public_time"]) if r["public_time"] is not None else None,
        reviewer=int(r["reviewer"]) if r["reviewer"] is not None else None,
        review_time=int(r["review_time"]) if r["review_time"] is not None else None,
    )


def resolve_now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else int(now)


# users (collaborator-owned; only what the engine reads)

def add_user(
    conn: sqlite3.Connection,
    name: str,
    level: int = 0,
    coin: int = 0,
    identity: Identity = Identity.USER,
) -> int:
    cur = conn.execute(
        "INSERT INTO users(name, level, coin, identity) VALUES(?,?,?,?)",
        (name, level, coin, Identity(identity).value),
    )
    conn.commit()
    return int(cur.lastrowid)


def get_viewer(conn: sqlite3.Connection, mid: int) -> Viewer:
    row = conn.execute("SELECT mid, identity FROM users WHERE mid = ?", (mid,)).fetchone()
    if not row:
        raise NotFound(f"user {mid} not found")
    return Viewer(mid=int(row["mid"]), identity=Identity(row["identity"]))


def get_coin(conn: sqlite3.Connection, mid: int) -> int:
    row = conn.execute("SELECT coin FROM users WHERE mid = ?", (mid,)).fetchone()
    if not row:
        raise NotFound(f"user {mid} not found")
    return int(row["coin"])


# videos

def get_video(conn: sqlite3.Connection, video_id: int) -> VideoRow:
    row = conn.execute(_VIDEO_SELECT + " WHERE v.id = ?", (video_id,)).fetchone()
    if not row:
        raise NotFound(f"video {video_id} not found")
    return _row_to_video(row)


def resolve_code(conn: sqlite3.Connection, code: str) -> int:
    video_id = idcodec.decode(code)
    ledger.require_video(conn, video_id)
    return video_id


def all_videos(conn: sqlite3.Connection) -> List[VideoRow]:
    rows = conn.execute(_VIDEO_SELECT + " ORDER BY v.id").fetchall()
    return [_row_to_video(r) for r in rows]


def can_see_video(viewer: Viewer, video: VideoRow, now: Optional[int] = None) -> bool:
    """Default visibility: owner, superuser, or public time reached."""
    if viewer.elevated or video.owner == viewer.mid:
        return True
    return video.is_public(resolve_now(now))


def post_video(
    conn: sqlite3.Connection,
    viewer: Viewer,
    title: str,
    description: str,
    duration: float,
    public_time: Optional[int],
    issuer: Optional[idcodec.IdIssuer] = None,
    now: Optional[int] = None,
) -> int:
    now = resolve_now(now)
    if not title:
        raise InvalidArgument("title must not be empty")
    if duration is None or duration < settings.min_video_duration:
        raise InvalidArgument(f"duration must be >= {settings.min_video_duration}")
    if public_time is None or public_time < now:
        raise InvalidArgument("public time must be set and not in the past")

    issuer = issuer or idcodec.IdIssuer()
    with transaction(conn):
        ledger.require_user(conn, viewer.mid)
        dup = conn.execute(
            "SELECT id FROM videos WHERE owner = ? AND title = ?",
            (viewer.mid, title),
        ).fetchone()
        if dup:
            raise Conflict(f"user {viewer.mid} already posted {title!r}")

        video_id = issuer.issue(conn)
        conn.execute(
            """
            INSERT INTO videos(id, owner, title, description, duration, commit_time, public_time)
            VALUES(?,?,?,?,?,?,?)
            """,
            (video_id, viewer.mid, title, description or "", float(duration), now, public_time),
        )
        create_counters(conn, video_id)

    logger.info("user %d posted video %d (%s)", viewer.mid, video_id, idcodec.encode(video_id))
    return video_id


def is_new_info_valid(
    old: VideoRow,
    title: str,
    description: str,
    duration: float,
    public_time: Optional[int],
) -> bool:
    """
    Duration has to stay the same (within epsilon), and something else has to change.
    """
    if abs(old.duration - duration) >= settings.duration_epsilon:
        return False
    return (
        old.title != title
        or old.description != (description or "")
        or old.public_time != public_time
    )


def update_video_info(
    conn: sqlite3.Connection,
    viewer: Viewer,
    video_id: int,
    title: str,
    description: str,
    duration: float,
    public_time: Optional[int],
    now: Optional[int] = None,
) -> None:
    now = resolve_now(now)
    if not title:
        raise InvalidArgument("title must not be empty")
    if public_time is None or public_time < now:
        raise InvalidArgument("public time must be set and not in the past")

    with transaction(conn):
        old = get_video(conn, video_id)
        if old.owner != viewer.mid:
            raise Forbidden(f"user {viewer.mid} does not own video {video_id}")
        if not is_new_info_valid(old, title, description, duration, public_time):
            raise InvalidArgument("duration must not change and some other field must")

        # changed content has to be reviewed again
        conn.execute(
            """
            UPDATE videos
            SET title = ?, description = ?, public_time = ?, reviewer = NULL, review_time = NULL
            WHERE id = ?
            """,
            (title, description or "", public_time, video_id),
        )


def review_video(
    conn: sqlite3.Connection,
    viewer: Viewer,
    video_id: int,
    now: Optional[int] = None,
) -> bool:
    """False when already reviewed; Forbidden for non-superusers and own videos."""
    now = resolve_now(now)
    if not viewer.elevated:
        raise Forbidden(f"user {viewer.mid} may not review videos")

    with transaction(conn):
        video = get_video(conn, video_id)
        if video.owner == viewer.mid:
            raise Forbidden("superusers can't review their own videos")
        if video.reviewed:
            return False
        conn.execute(
            "UPDATE videos SET reviewer = ?, review_time = ? WHERE id = ?",
            (viewer.mid, now, video_id),
        )
    return True


def delete_video(conn: sqlite3.Connection, engine: CounterEngine, viewer: Viewer, video_id: int) -> None:
    video = get_video(conn, video_id)
    if not viewer.elevated and video.owner != viewer.mid:
        raise Forbidden(f"user {viewer.mid} may not delete video {video_id}")
    engine.remove_video(video_id)


def recount_video(conn: sqlite3.Connection, engine: CounterEngine, viewer: Viewer, video_id: int) -> VideoCounters:
    if not viewer.elevated:
        raise Forbidden(f"user {viewer.mid} may not recount video counters")
    get_video(conn, video_id)
    return engine.recount(video_id)


def average_view_rate(conn: sqlite3.Connection, video_id: int) -> float:
    """Mean fraction of the video watched per viewer (0.0 with no views)."""
    video = get_video(conn, video_id)
    c = read_counters(conn, video_id)
    if c.view_count == 0 or video.duration <= 0:
        return 0.0
    rate = c.view_time_sum / (c.view_count * video.duration)
    return rate if math.isfinite(rate) else 0.0
