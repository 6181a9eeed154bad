"""
Tests for vidcore.engine.search.

The central property: refining a query incrementally must give exactly
what a fresh index would give for the same terms.
"""

from __future__ import annotations

import threading

import pytest

from vidcore.engine import search
from vidcore.engine.errors import InvalidArgument
from vidcore.engine.search import SearchEntry, SearchIndex, SearchSession


@pytest.fixture
def index(engine) -> SearchIndex:
    return SearchIndex(engine)


@pytest.fixture
def library(make_user, make_video):
    owner = make_user("owner")
    fan = make_user("fan")
    videos = {
        "cat_piano": make_video(owner, title="cat cat piano"),
        "cat": make_video(owner, title="cat video"),
        "dog": make_video(owner, title="dog show", description="no felines here"),
        "piano": make_video(owner, title="piano lesson"),
    }
    return owner, fan, videos


class TestNormalizeKeywords:
    def test_sorted_lowercase_unique(self):
        assert search.normalize_keywords("Piano cat  CAT") == ["cat", "piano"]

    def test_iterable(self):
        assert search.normalize_keywords(["b a", "A"]) == ["a", "b"]

    @pytest.mark.parametrize("keywords", ["", "   ", [], None])
    def test_empty(self, keywords):
        with pytest.raises(InvalidArgument):
            search.normalize_keywords(keywords)


class TestScoring:
    def test_apply_keyword_accumulates(self):
        session = SearchSession(viewer=None)
        session.snapshot[1] = SearchEntry(text="cat cat piano", view_count=0)
        search.apply_keyword(session, "cat")
        search.apply_keyword(session, "piano")
        assert session.snapshot[1].relevance == 3
        assert session.applied_keywords == ["cat", "piano"]

    def test_rank_order(self):
        session = SearchSession(viewer=None)
        session.snapshot = {
            5: SearchEntry("a", view_count=1, relevance=2),
            3: SearchEntry("b", view_count=9, relevance=2),
            4: SearchEntry("c", view_count=9, relevance=2),
            1: SearchEntry("d", view_count=100, relevance=1),
            2: SearchEntry("e", view_count=100, relevance=0),
        }
        assert search.rank(session) == [3, 4, 5, 1]


class TestSearch:
    def test_basic(self, index, library):
        _, fan, v = library
        assert index.search(fan, "cat", 10, 1) == [v["cat_piano"], v["cat"]]

    def test_view_count_breaks_ties(self, index, engine, library):
        _, fan, v = library
        engine.record_view(fan.mid, v["piano"], 1.0)
        # both score 1 for "piano"; the watched one comes first
        assert index.search(fan, "piano", 10, 1) == [v["piano"], v["cat_piano"]]

    def test_adding_terms_only_grows_results(self, index, library):
        _, fan, _ = library
        narrow = set(index.search(fan, "cat", 50, 1))
        wide = set(index.search(fan, "cat piano", 50, 1))
        assert narrow <= wide

    def test_incremental_matches_fresh(self, index, engine, library):
        _, fan, _ = library
        index.search(fan, "cat", 10, 1)
        incremental = index.search(fan, "piano cat", 10, 1)

        fresh = SearchIndex(engine).search(fan, "cat piano", 10, 1)
        assert incremental == fresh
        assert index.get_session(fan).applied_keywords == ["cat", "piano"]

    def test_catalog_changes_between_refinements(self, index, engine, library, make_video):
        owner, fan, v = library
        index.search(fan, "cat", 10, 1)

        added = make_video(owner, title="piano cat duet")
        engine.remove_video(v["cat"])

        incremental = index.search(fan, "cat piano", 10, 1)
        fresh = SearchIndex(engine).search(fan, "cat piano", 10, 1)
        assert incremental == fresh
        assert added in incremental
        assert v["cat"] not in incremental

    def test_non_extension_rebuilds(self, index, engine, library):
        _, fan, _ = library
        index.search(fan, "cat piano", 10, 1)
        result = index.search(fan, "piano", 10, 1)

        assert result == SearchIndex(engine).search(fan, "piano", 10, 1)
        assert index.get_session(fan).applied_keywords == ["piano"]

    def test_pagination(self, index, library):
        _, fan, v = library
        full = index.search(fan, "cat piano", 10, 1)
        assert index.search(fan, "cat piano", 2, 1) == full[:2]
        assert index.search(fan, "cat piano", 2, 2) == full[2:4]
        assert index.search(fan, "cat piano", 2, 9) == []

    def test_bad_paging(self, index, library):
        _, fan, _ = library
        with pytest.raises(InvalidArgument):
            index.search(fan, "cat", 0, 1)
        with pytest.raises(InvalidArgument):
            index.search(fan, "cat", 10, 0)

    def test_sessions_are_per_viewer(self, index, library, make_user):
        _, fan, _ = library
        other = make_user("other")
        index.search(fan, "cat", 10, 1)
        index.search(other, "dog", 10, 1)

        assert index.get_session(fan).applied_keywords == ["cat"]
        assert index.get_session(other).applied_keywords == ["dog"]

        index.discard(fan)
        assert index.get_session(fan) is None
        assert index.get_session(other) is not None

    def test_hidden_videos(self, index, library, make_video):
        owner, fan, _ = library
        hidden = make_video(owner, title="secret cat", public=False)

        assert hidden not in index.search(fan, "secret", 10, 1)
        assert index.search(owner, "secret", 10, 1) == [hidden]

    def test_custom_visibility(self, engine, library):
        _, fan, v = library
        index = SearchIndex(engine, can_see=lambda viewer, video: video.id != v["cat"])
        assert index.search(fan, "cat", 10, 1) == [v["cat_piano"]]

    def test_same_viewer_concurrent_searches(self, index, engine, library):
        _, fan, _ = library
        # refinements and rebuilds interleaved on one viewer's session
        queries = ["cat", "cat piano", "piano", "dog", "cat dog piano", "felines dog"]
        expected = {q: SearchIndex(engine).search(fan, q, 10, 1) for q in queries}
        errors = []

        def worker(offset):
            try:
                for i in range(12):
                    q = queries[(offset + i) % len(queries)]
                    got = index.search(fan, q, 10, 1)
                    if got != expected[q]:
                        errors.append((q, got, expected[q]))
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []


class TestSessionCap:
    def test_least_recently_used_is_evicted(self, engine, library, make_user):
        _, fan, _ = library
        second, third = make_user("second"), make_user("third")
        index = SearchIndex(engine, max_sessions=2)

        index.search(fan, "cat", 10, 1)
        index.search(second, "dog", 10, 1)
        index.search(fan, "cat piano", 10, 1)  # fan is now the most recent
        index.search(third, "piano", 10, 1)

        assert index.get_session(second) is None
        assert index.get_session(fan).applied_keywords == ["cat", "piano"]
        assert index.get_session(third) is not None

    def test_evicted_viewer_rebuilds(self, engine, library, make_user):
        _, fan, _ = library
        other = make_user("other")
        index = SearchIndex(engine, max_sessions=1)

        index.search(fan, "cat", 10, 1)
        index.search(other, "dog", 10, 1)
        assert index.get_session(fan) is None

        assert index.search(fan, "cat piano", 10, 1) == SearchIndex(engine).search(fan, "cat piano", 10, 1)
        assert index.get_session(fan).applied_keywords == ["cat", "piano"]

    def test_cap_must_be_positive(self, engine):
        with pytest.raises(InvalidArgument):
            SearchIndex(engine, max_sessions=0)
