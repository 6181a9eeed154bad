from __future__ import annotations

import logging
import sqlite3

from vidcore.app.db import transaction
from vidcore.engine.errors import InvalidArgument, MalformedCode

logger = logging.getLogger(__name__)

# deploy-time constants: changing any of them re-labels every existing video
XOR_KEY = 177451812
ADD_KEY = 8728348608
ALPHABET = "fZodR9XQDSUm21yCkr6zBqiveYah8bt4xsWpHnJE7jL5VG3guMTKNPAwcF"
TEMPLATE = "BV1  4 1 7  "
POSITIONS = (11, 10, 3, 8, 4, 6)  # where base-58 digit i (least significant first) lands

BASE = len(ALPHABET)
DIGITS = len(POSITIONS)
CODE_LENGTH = len(TEMPLATE)

# (id ^ XOR_KEY) stays below 2**34 for every id below 2**34, and
# 2**34 + ADD_KEY < 58**6, so every id in range gets exactly DIGITS digits
MAX_ID = 2 ** 34 - 1

_DIGIT_OF = {ch: i for i, ch in enumerate(ALPHABET)}
_FIXED = {i: ch for i, ch in enumerate(TEMPLATE) if ch != " "}


def encode(video_id: int) -> str:
    if video_id < 0 or video_id > MAX_ID:
        raise InvalidArgument(f"video id out of range: {video_id}")

    t = (video_id ^ XOR_KEY) + ADD_KEY
    out = list(TEMPLATE)
    for i, pos in enumerate(POSITIONS):
        out[pos] = ALPHABET[t // BASE ** i % BASE]
    return "".join(out)


def decode(code: str) -> int:
    if not isinstance(code, str) or len(code) != CODE_LENGTH:
        raise MalformedCode(f"bad code length: {code!r}")

    for pos, ch in _FIXED.items():
        if code[pos] != ch:
            raise MalformedCode(f"bad code template: {code!r}")

    t = 0
    for i, pos in enumerate(POSITIONS):
        digit = _DIGIT_OF.get(code[pos])
        if digit is None:
            raise MalformedCode(f"character outside alphabet: {code[pos]!r}")
        t += digit * BASE ** i

    # reverse order of encode: subtract, then xor
    mixed = t - ADD_KEY
    if mixed < 0:
        raise MalformedCode(f"code outside id range: {code!r}")
    video_id = mixed ^ XOR_KEY
    if video_id > MAX_ID:
        raise MalformedCode(f"code outside id range: {code!r}")
    return video_id


class IdIssuer:
    """
    Append-only issuing counter for new VideoIds.
    The high-water mark lives in its own row, so deleting videos never
    lets an id come back.
    """

    def __init__(self, name: str = "video"):
        self.name = name

    def peek(self, conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT last_value FROM id_issuer WHERE name = ?",
            (self.name,),
        ).fetchone()
        if not row:
            raise RuntimeError(f"id issuer {self.name!r} not initialised (run init_db)")
        return int(row["last_value"])

    def _bump(self, conn: sqlite3.Connection) -> int:
        cur = conn.execute(
            "UPDATE id_issuer SET last_value = last_value + 1 WHERE name = ?",
            (self.name,),
        )
        if cur.rowcount != 1:
            raise RuntimeError(f"id issuer {self.name!r} not initialised (run init_db)")
        issued = self.peek(conn)
        if issued > MAX_ID:
            raise InvalidArgument("video id space exhausted")
        return issued

    def issue(self, conn: sqlite3.Connection) -> int:
        """
        Bump and return the mark. Joins the caller's open transaction, so the
        id commits together with the row it labels; otherwise runs in its own.
        """
        if conn.in_transaction:
            issued = self._bump(conn)
        else:
            with transaction(conn):
                issued = self._bump(conn)
        logger.debug("issued %s id %d", self.name, issued)
        return issued
