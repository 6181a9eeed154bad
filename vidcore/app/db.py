import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional
from vidcore.app.config import settings
from vidcore.app.schema import SCHEMA_SQL

def _sqlite_path_from_url(database_url: str) -> str:
    # supports:
    #   sqlite:///./data/app.db  -> ./data/app.db
    #   sqlite:////abs/path.db   -> /abs/path.db
    if not database_url.startswith("sqlite:"):
        raise ValueError("Only sqlite DATABASE_URL is supported")

    if database_url.startswith("sqlite:///./") or database_url.startswith("sqlite:///../"):
        return database_url.replace("sqlite:///", "", 1)

    if database_url.startswith("sqlite:////"):
        return database_url.replace("sqlite:////", "/", 1)

    if database_url.startswith("sqlite:///"):
        # treat as absolute (/path...)
        return database_url.replace("sqlite://", "", 1)

    return database_url.replace("sqlite:", "", 1)

def get_db_path() -> str:
    return _sqlite_path_from_url(settings.database_url)

def connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or get_db_path()
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(path, timeout=settings.sqlite_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn

@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    One write transaction. BEGIN IMMEDIATE takes the sqlite write lock up front,
    so read-then-write sequences inside the block can't interleave with
    another writer.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()

def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.execute(
        "INSERT OR IGNORE INTO id_issuer(name, last_value) VALUES('video', ?)",
        (settings.first_video_id,),
    )
    conn.commit()
