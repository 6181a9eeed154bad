from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional
import logging
import math
import sqlite3
import time

from vidcore.app.db import connect, transaction
from vidcore.engine import ledger
from vidcore.engine.errors import Conflict, InvalidArgument, NotFound
from vidcore.engine.ledger import EdgeKind
from vidcore.engine.locks import KeyedLocks

logger = logging.getLogger(__name__)


@dataclass
class VideoCounters:
    video_id: int
    like_count: int
    coin_count: int
    fav_count: int
    view_count: int
    danmu_count: int
    view_time_sum: float
    score: float


def compute_score(
    like_count: int,
    coin_count: int,
    fav_count: int,
    view_count: int,
    danmu_count: int,
    view_rate_sum: float,
) -> float:
    """
    Composite popularity score.
    like/coin/fav ratios are capped at 1 each; danmu density is not.
    view_rate_sum is the sum over views of watched seconds / duration, so the
    last term is the average watch ratio.
    """
    if view_count == 0:
        return 0.0
    v = float(view_count)
    return (
        min(1.0, like_count / v)
        + min(1.0, coin_count / v)
        + min(1.0, fav_count / v)
        + danmu_count / v
        + view_rate_sum / v
    )


def _row_to_counters(r: sqlite3.Row) -> VideoCounters:
    return VideoCounters(
        video_id=int(r["video_id"]),
        like_count=int(r["like_count"]),
        coin_count=int(r["coin_count"]),
        fav_count=int(r["fav_count"]),
        view_count=int(r["view_count"]),
        danmu_count=int(r["danmu_count"]),
        view_time_sum=float(r["view_time_sum"]),
        score=float(r["score"]),
    )


def read_counters(conn: sqlite3.Connection, video_id: int) -> VideoCounters:
    row = conn.execute(
        """
        SELECT video_id, like_count, coin_count, fav_count, view_count,
               danmu_count, view_time_sum, score
        FROM video_counters
        WHERE video_id = ?
        """,
        (video_id,),
    ).fetchone()
    if not row:
        raise NotFound(f"video {video_id} not found")
    return _row_to_counters(row)


def create_counters(conn: sqlite3.Connection, video_id: int) -> None:
    conn.execute("INSERT INTO video_counters(video_id) VALUES(?)", (video_id,))


def _bump(conn: sqlite3.Connection, video_id: int, column: str, delta: int) -> None:
    conn.execute(
        f"UPDATE video_counters SET {column} = {column} + ? WHERE video_id = ?",
        (delta, video_id),
    )


def _video_duration(conn: sqlite3.Connection, video_id: int) -> float:
    row = conn.execute("SELECT duration FROM videos WHERE id = ?", (video_id,)).fetchone()
    if not row:
        raise NotFound(f"video {video_id} not found")
    return float(row["duration"])


def view_rate_sum(view_time_sum: float, duration: float) -> float:
    # every view has the same duration, so the per-view ratios sum to this
    return view_time_sum / duration if duration > 0 else 0.0


def _refresh_score(conn: sqlite3.Connection, video_id: int) -> float:
    c = read_counters(conn, video_id)
    score = compute_score(
        c.like_count,
        c.coin_count,
        c.fav_count,
        c.view_count,
        c.danmu_count,
        view_rate_sum(c.view_time_sum, _video_duration(conn, video_id)),
    )
    conn.execute(
        "UPDATE video_counters SET score = ? WHERE video_id = ?",
        (score, video_id),
    )
    return score


def counters_drifted(before: VideoCounters, after: VideoCounters) -> bool:
    counts = ("like_count", "coin_count", "fav_count", "view_count", "danmu_count")
    if any(getattr(before, f) != getattr(after, f) for f in counts):
        return True
    return not (
        math.isclose(before.view_time_sum, after.view_time_sum, abs_tol=1e-9)
        and math.isclose(before.score, after.score, abs_tol=1e-9)
    )


class CounterEngine:
    """
    Owns every mutation of video_counters.

    Each mutation runs under the video's lock and inside one write transaction
    that also touches the underlying fact rows, so no reader ever sees an edge
    without its count (or the reverse). Different videos never block each other
    in-process.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        self._video_locks = KeyedLocks()

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    @contextmanager
    def video_lock(self, video_id: int) -> Iterator[None]:
        """Re-entrant, so policy code can hold it around a call into the engine."""
        with self._video_locks.hold(video_id):
            yield

    # toggles

    def toggle(self, kind: EdgeKind, actor: int, video_id: int) -> bool:
        """
        Flip the (actor, video, kind) edge. True = edge now present.
        A Conflict (another writer inserted the same edge first) is retried once;
        toggling is defined on current existence so the retry is safe.
        """
        if not kind.is_video_edge:
            raise InvalidArgument(f"{kind.value} is not a video engagement")

        try:
            return self._toggle_once(kind, actor, video_id)
        except Conflict:
            logger.info("toggle %s (%d, %d) raced another writer, retrying", kind.value, actor, video_id)
            return self._toggle_once(kind, actor, video_id)

    def _toggle_once(self, kind: EdgeKind, actor: int, video_id: int) -> bool:
        column = ledger.counter_column(kind)
        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                ledger.require_video(conn, video_id)
                ledger.require_user(conn, actor)

                if ledger.remove_edge(conn, kind, actor, video_id):
                    _bump(conn, video_id, column, -1)
                    present = False
                else:
                    ledger.add_edge(conn, kind, actor, video_id)
                    _bump(conn, video_id, column, +1)
                    present = True
                _refresh_score(conn, video_id)
        finally:
            conn.close()
        return present

    def add(self, kind: EdgeKind, actor: int, video_id: int, charge_coin: bool = False) -> bool:
        """
        Insert-only variant. False if the edge already exists, or if
        charge_coin is set and the actor has no coin left to spend.
        """
        if not kind.is_video_edge:
            raise InvalidArgument(f"{kind.value} is not a video engagement")

        column = ledger.counter_column(kind)
        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                ledger.require_video(conn, video_id)
                ledger.require_user(conn, actor)

                if ledger.edge_exists(conn, kind, actor, video_id):
                    return False

                if charge_coin:
                    cur = conn.execute(
                        "UPDATE users SET coin = coin - 1 WHERE mid = ? AND coin >= 1",
                        (actor,),
                    )
                    if cur.rowcount != 1:
                        logger.warning("user %d has no coin to spend on video %d", actor, video_id)
                        return False

                ledger.add_edge(conn, kind, actor, video_id)
                _bump(conn, video_id, column, +1)
                _refresh_score(conn, video_id)
        finally:
            conn.close()
        return True

    # views

    def record_view(self, actor: int, video_id: int, seconds: float) -> VideoCounters:
        if seconds is None or not math.isfinite(seconds) or seconds < 0:
            raise InvalidArgument(f"watched seconds must be a finite number >= 0, got {seconds}")

        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                ledger.require_video(conn, video_id)
                ledger.require_user(conn, actor)

                previous = ledger.get_view_time(conn, actor, video_id)
                if previous is None:
                    ledger.insert_view(conn, actor, video_id, seconds)
                    conn.execute(
                        """
                        UPDATE video_counters
                        SET view_count = view_count + 1, view_time_sum = view_time_sum + ?
                        WHERE video_id = ?
                        """,
                        (seconds, video_id),
                    )
                else:
                    # re-watch: the edge keeps one value, the sum follows it
                    ledger.update_view(conn, actor, video_id, seconds)
                    conn.execute(
                        "UPDATE video_counters SET view_time_sum = view_time_sum + ? WHERE video_id = ?",
                        (seconds - previous, video_id),
                    )
                _refresh_score(conn, video_id)
                result = read_counters(conn, video_id)
        finally:
            conn.close()
        return result

    # danmu

    def add_danmu(
        self,
        actor: int,
        video_id: int,
        display_time: float,
        content: str,
        posted_at: Optional[int] = None,
    ) -> int:
        if display_time is None or not math.isfinite(display_time) or display_time < 0:
            raise InvalidArgument(f"display time must be a finite number >= 0, got {display_time}")
        posted_at = posted_at if posted_at is not None else int(time.time())

        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                ledger.require_video(conn, video_id)
                ledger.require_user(conn, actor)
                danmu_id = ledger.insert_danmu(conn, actor, video_id, display_time, content, posted_at)
                _bump(conn, video_id, "danmu_count", +1)
                _refresh_score(conn, video_id)
        finally:
            conn.close()
        return danmu_id

    # cascade

    def remove_video(self, video_id: int) -> None:
        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                ledger.require_video(conn, video_id)
                removed = ledger.delete_video_facts(conn, video_id)
                conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
        finally:
            conn.close()
        logger.info("removed video %d: %s", video_id, removed)

    # repair

    def recount(self, video_id: int) -> VideoCounters:
        """
        Rebuild the counters row from the fact tables and rescore it.
        Any drift from the stored row is logged; the repaired counters are returned.
        """
        conn = self._connect()
        try:
            with self.video_lock(video_id), transaction(conn):
                before = read_counters(conn, video_id)
                view_count, view_time_sum = ledger.view_totals(conn, video_id)
                conn.execute(
                    """
                    UPDATE video_counters
                    SET like_count = ?, coin_count = ?, fav_count = ?,
                        view_count = ?, danmu_count = ?, view_time_sum = ?
                    WHERE video_id = ?
                    """,
                    (
                        ledger.count_edges(conn, EdgeKind.LIKE, video_id),
                        ledger.count_edges(conn, EdgeKind.COIN, video_id),
                        ledger.count_edges(conn, EdgeKind.FAVORITE, video_id),
                        view_count,
                        ledger.count_danmu(conn, video_id),
                        view_time_sum,
                        video_id,
                    ),
                )
                _refresh_score(conn, video_id)
                after = read_counters(conn, video_id)
        finally:
            conn.close()

        if counters_drifted(before, after):
            logger.warning("counters for video %d drifted: %s -> %s", video_id, before, after)
        return after

    # reads

    def counters(self, video_id: int) -> VideoCounters:
        conn = self._connect()
        try:
            return read_counters(conn, video_id)
        finally:
            conn.close()

    def score(self, video_id: int) -> float:
        return self.counters(video_id).score

    def view_counts(self, video_ids) -> dict:
        """Current view_count per id; ids without a counters row (deleted) are left out."""
        ids = list(video_ids)
        if not ids:
            return {}
        conn = self._connect()
        try:
            out = {}
            # stay under sqlite's bound-parameter limit
            for i in range(0, len(ids), 500):
                chunk = ids[i:i + 500]
                q_marks = ",".join(["?"] * len(chunk))
                rows = conn.execute(
                    f"SELECT video_id, view_count FROM video_counters WHERE video_id IN ({q_marks})",
                    tuple(chunk),
                ).fetchall()
                for r in rows:
                    out[int(r["video_id"])] = int(r["view_count"])
            return out
        finally:
            conn.close()
