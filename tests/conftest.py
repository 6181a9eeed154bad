"""Shared pytest fixtures.

Fixture summary
---------------
db_path     - path of a fresh, initialised sqlite file per test.
conn        - open connection to that file (closed after the test).
engine      - CounterEngine bound to the same file.
make_user   - factory: make_user("name", level=.., coin=.., identity=..) -> Viewer.
make_video  - factory: make_video(owner, title=.., public=True, reviewed=True) -> video id.

Every test gets its own database, so nothing leaks between tests and the
suite needs no running services.
"""

from __future__ import annotations

import itertools
import time
from typing import Callable, Optional

import pytest

from vidcore.app.db import connect, init_db
from vidcore.engine import catalog
from vidcore.engine.catalog import Identity, Viewer
from vidcore.engine.counters import CounterEngine

# posting time used by the factories; far enough in the past that
# "public at NOW" videos are visible to the real clock
NOW = 1_700_000_000
FUTURE = int(time.time()) + 365 * 24 * 3600


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "app.db")
    conn = connect(path)
    init_db(conn)
    conn.close()
    return path


@pytest.fixture
def conn(db_path):
    c = connect(db_path)
    yield c
    c.close()


@pytest.fixture
def engine(db_path) -> CounterEngine:
    return CounterEngine(db_path)


@pytest.fixture
def make_user(conn) -> Callable[..., Viewer]:
    def _make(name: str, level: int = 0, coin: int = 0, identity: Identity = Identity.USER) -> Viewer:
        mid = catalog.add_user(conn, name, level=level, coin=coin, identity=identity)
        return catalog.get_viewer(conn, mid)

    return _make


@pytest.fixture
def make_video(conn) -> Callable[..., int]:
    reviewer: dict = {}
    serial = itertools.count(1)

    def _make(
        owner: Viewer,
        title: Optional[str] = None,
        description: str = "",
        duration: float = 100.0,
        public: bool = True,
        reviewed: bool = True,
    ) -> int:
        title = title or f"video {next(serial)}"
        video_id = catalog.post_video(
            conn,
            owner,
            title=title,
            description=description,
            duration=duration,
            public_time=NOW if public else FUTURE,
            now=NOW,
        )
        if reviewed:
            if "admin" not in reviewer:
                mid = catalog.add_user(conn, "__reviewer__", identity=Identity.SUPERUSER)
                reviewer["admin"] = catalog.get_viewer(conn, mid)
            catalog.review_video(conn, reviewer["admin"], video_id, now=NOW)
        return video_id

    return _make
