from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Union
import logging
import threading

from vidcore.app.config import settings
from vidcore.app.db import connect
from vidcore.engine import catalog
from vidcore.engine.catalog import Viewer, VideoRow
from vidcore.engine.counters import CounterEngine
from vidcore.engine.errors import InvalidArgument
from vidcore.engine.locks import KeyedLocks
from vidcore.engine.paging import check_page, page_slice

logger = logging.getLogger(__name__)

VisibilityPredicate = Callable[[Viewer, VideoRow], bool]


@dataclass
class SearchEntry:
    text: str
    view_count: int
    relevance: int = 0


@dataclass
class SearchSession:
    """One viewer's scratch space: the terms scored so far and the per-video partial sums."""
    viewer: Viewer
    applied_keywords: List[str] = field(default_factory=list)
    snapshot: Dict[int, SearchEntry] = field(default_factory=dict)


def normalize_keywords(keywords: Union[str, Iterable[str]]) -> List[str]:
    """Split on whitespace, lowercase, sort, dedupe."""
    if keywords is None:
        raise InvalidArgument("keywords must not be empty")
    if isinstance(keywords, str):
        parts = keywords.split()
    else:
        parts = [p for k in keywords for p in str(k).split()]
    terms = sorted({p.lower() for p in parts if p})
    if not terms:
        raise InvalidArgument("keywords must not be empty")
    return terms


def searchable_text(video: VideoRow) -> str:
    return (video.title + video.description + video.owner_name).lower()


def score_text(text: str, terms: Iterable[str]) -> int:
    # non-overlapping occurrences, summed over terms
    return sum(text.count(t) for t in terms)


def apply_keyword(session: SearchSession, term: str) -> None:
    term = term.lower()
    if not term:
        raise InvalidArgument("search term must not be empty")
    for entry in session.snapshot.values():
        entry.relevance += entry.text.count(term)
    if term not in session.applied_keywords:
        session.applied_keywords.append(term)
        session.applied_keywords.sort()


def rank(session: SearchSession) -> List[int]:
    hits = [(vid, e) for vid, e in session.snapshot.items() if e.relevance > 0]
    hits.sort(key=lambda x: (-x[1].relevance, -x[1].view_count, x[0]))
    return [vid for vid, _ in hits]


class SearchIndex:
    """
    Per-viewer incremental keyword search.

    Refining a query by adding terms only scores the added terms; any other
    change rebuilds the viewer's session from scratch. Calls for the same
    viewer are serialised; different viewers never share or wait on each
    other's sessions. Only the most recently used max_sessions sessions are
    kept; an evicted viewer simply rebuilds on their next call.
    """

    def __init__(
        self,
        counters: CounterEngine,
        can_see: Optional[VisibilityPredicate] = None,
        db_path: Optional[str] = None,
        max_sessions: Optional[int] = None,
    ):
        self.counters = counters
        self.can_see = can_see or catalog.can_see_video
        self.db_path = db_path if db_path is not None else counters.db_path
        self.max_sessions = max_sessions if max_sessions is not None else settings.search_max_sessions
        if self.max_sessions < 1:
            raise InvalidArgument(f"max_sessions must be >= 1, got {self.max_sessions}")
        self._sessions: OrderedDict[int, SearchSession] = OrderedDict()
        self._sessions_guard = threading.Lock()
        self._viewer_locks = KeyedLocks()

    def _visible_videos(self, viewer: Viewer) -> Dict[int, VideoRow]:
        conn = connect(self.db_path)
        try:
            videos = catalog.all_videos(conn)
        finally:
            conn.close()
        return {v.id: v for v in videos if self.can_see(viewer, v)}

    def get_session(self, viewer: Viewer) -> Optional[SearchSession]:
        with self._sessions_guard:
            session = self._sessions.get(viewer.mid)
            if session is not None:
                self._sessions.move_to_end(viewer.mid)
            return session

    def discard(self, viewer: Viewer) -> None:
        with self._sessions_guard:
            self._sessions.pop(viewer.mid, None)

    def start_session(self, viewer: Viewer) -> SearchSession:
        visible = self._visible_videos(viewer)
        counts = self.counters.view_counts(visible.keys())
        session = SearchSession(viewer=viewer)
        for vid, video in visible.items():
            if vid not in counts:
                continue  # deleted between the two reads
            session.snapshot[vid] = SearchEntry(text=searchable_text(video), view_count=counts[vid])
        with self._sessions_guard:
            self._sessions[viewer.mid] = session
            self._sessions.move_to_end(viewer.mid)
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("evicted search session for user %d", evicted)
        return session

    def _reconcile(self, session: SearchSession) -> None:
        """
        Bring an existing snapshot in line with the catalog: drop videos that
        are gone or hidden, add newly visible ones and rescore edited ones
        against every applied term.
        """
        visible = self._visible_videos(session.viewer)
        for vid in [v for v in session.snapshot if v not in visible]:
            del session.snapshot[vid]
        for vid, video in visible.items():
            text = searchable_text(video)
            entry = session.snapshot.get(vid)
            if entry is None or entry.text != text:
                session.snapshot[vid] = SearchEntry(
                    text=text,
                    view_count=entry.view_count if entry else 0,
                    relevance=score_text(text, session.applied_keywords),
                )

    def _refresh_view_counts(self, session: SearchSession) -> None:
        counts = self.counters.view_counts(session.snapshot.keys())
        for vid in list(session.snapshot):
            if vid in counts:
                session.snapshot[vid].view_count = counts[vid]
            else:
                del session.snapshot[vid]

    def search(
        self,
        viewer: Viewer,
        keywords: Union[str, Iterable[str]],
        page_size: int,
        page_num: int,
    ) -> List[int]:
        check_page(page_size, page_num)
        terms = normalize_keywords(keywords)

        with self._viewer_locks.hold(viewer.mid):
            session = self.get_session(viewer)
            applied = set(session.applied_keywords) if session else None

            if session is None or not applied.issubset(terms):
                logger.debug("rebuilding search session for user %d: %s", viewer.mid, terms)
                session = self.start_session(viewer)
                new_terms = terms
            else:
                session.viewer = viewer  # role may have changed since the last call
                self._reconcile(session)
                new_terms = [t for t in terms if t not in applied]

            for term in new_terms:
                apply_keyword(session, term)

            self._refresh_view_counts(session)
            ranked = rank(session)

        return page_slice(ranked, page_size, page_num)
