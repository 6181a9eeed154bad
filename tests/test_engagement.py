"""Tests for vidcore.engine.engagement: who may engage with what, and danmu."""

from __future__ import annotations

import pytest

from conftest import NOW
from vidcore.engine import catalog, engagement, ledger
from vidcore.engine.catalog import Identity
from vidcore.engine.errors import Forbidden, InvalidArgument, NotFound
from vidcore.engine.ledger import EdgeKind


@pytest.fixture
def cast(make_user, make_video):
    owner = make_user("owner")
    fan = make_user("fan", coin=1)
    admin = make_user("admin", identity=Identity.SUPERUSER)
    vid = make_video(owner, duration=60.0)
    return owner, fan, admin, vid


class TestVideoActions:
    def test_like_and_collect_toggle(self, conn, engine, cast):
        _, fan, _, vid = cast
        assert engagement.like_video(conn, engine, fan, vid) is True
        assert engagement.collect_video(conn, engine, fan, vid) is True
        assert engagement.like_video(conn, engine, fan, vid) is False

        c = engine.counters(vid)
        assert (c.like_count, c.fav_count) == (0, 1)

    def test_coin_spends_once(self, conn, engine, cast):
        _, fan, _, vid = cast
        assert engagement.coin_video(conn, engine, fan, vid) is True
        assert engagement.coin_video(conn, engine, fan, vid) is False
        assert catalog.get_coin(conn, fan.mid) == 0
        assert engine.counters(vid).coin_count == 1

    def test_owner_cannot_engage(self, conn, engine, cast):
        owner, _, _, vid = cast
        with pytest.raises(Forbidden):
            engagement.like_video(conn, engine, owner, vid)

    def test_unreviewed_or_hidden(self, conn, engine, cast, make_video):
        owner, fan, admin, _ = cast
        unreviewed = make_video(owner, reviewed=False)
        hidden = make_video(owner, public=False)

        for vid in (unreviewed, hidden):
            with pytest.raises(Forbidden):
                engagement.like_video(conn, engine, fan, vid)
            # superusers are not held to review or public time
            assert engagement.like_video(conn, engine, admin, vid) is True

    def test_unknown_video(self, conn, engine, cast):
        _, fan, _, _ = cast
        with pytest.raises(NotFound):
            engagement.like_video(conn, engine, fan, 5)


class TestWatch:
    def test_watch(self, conn, engine, cast):
        _, fan, _, vid = cast
        c = engagement.watch_video(conn, engine, fan, vid, 30.0)
        assert c.view_count == 1
        assert ledger.has_watched(conn, fan.mid, vid)

    def test_hidden_video(self, conn, engine, cast, make_video):
        owner, fan, _, _ = cast
        hidden = make_video(owner, public=False)
        with pytest.raises(Forbidden):
            engagement.watch_video(conn, engine, fan, hidden, 1.0)
        # the owner may watch their own unpublished video
        engagement.watch_video(conn, engine, owner, hidden, 1.0)


class TestFollow:
    def test_toggle(self, conn, cast):
        owner, fan, _, _ = cast
        assert engagement.follow(conn, fan, owner.mid) is True
        assert ledger.edge_exists(conn, EdgeKind.FOLLOW, fan.mid, owner.mid)
        assert engagement.follow(conn, fan, owner.mid) is False
        assert not ledger.edge_exists(conn, EdgeKind.FOLLOW, fan.mid, owner.mid)

    def test_self_follow(self, conn, cast):
        _, fan, _, _ = cast
        with pytest.raises(InvalidArgument):
            engagement.follow(conn, fan, fan.mid)

    def test_unknown_followee(self, conn, cast):
        _, fan, _, _ = cast
        with pytest.raises(NotFound):
            engagement.follow(conn, fan, 9999)


class TestSendDanmu:
    def test_requires_watch(self, conn, engine, cast):
        _, fan, _, vid = cast
        with pytest.raises(Forbidden):
            engagement.send_danmu(conn, engine, fan, vid, "first!", 1.0)

        engagement.watch_video(conn, engine, fan, vid, 5.0)
        danmu_id = engagement.send_danmu(conn, engine, fan, vid, "first!", 1.0, now=NOW)

        entry = ledger.get_danmu(conn, danmu_id)
        assert (entry.video_id, entry.mid, entry.content, entry.posted_at) == (vid, fan.mid, "first!", NOW)
        assert engine.counters(vid).danmu_count == 1

    @pytest.mark.parametrize("content, time", [("", 1.0), ("x" * 301, 1.0), ("ok", -1.0), ("ok", 61.0)])
    def test_invalid(self, conn, engine, cast, content, time):
        _, fan, _, vid = cast
        engagement.watch_video(conn, engine, fan, vid, 5.0)
        with pytest.raises(InvalidArgument):
            engagement.send_danmu(conn, engine, fan, vid, content, time)

    def test_hidden_video(self, conn, engine, cast, make_video):
        owner, fan, _, _ = cast
        hidden = make_video(owner, public=False)
        with pytest.raises(NotFound):
            engagement.send_danmu(conn, engine, fan, hidden, "hi", 1.0)


class TestDisplayDanmu:
    @pytest.fixture
    def danmu(self, conn, engine, cast, make_user):
        _, fan, _, vid = cast
        other = make_user("other")
        engagement.watch_video(conn, engine, fan, vid, 5.0)
        engagement.watch_video(conn, engine, other, vid, 5.0)
        ids = [
            engagement.send_danmu(conn, engine, other, vid, "lol", 12.0, now=NOW + 5),
            engagement.send_danmu(conn, engine, fan, vid, "lol", 3.0, now=NOW + 1),
            engagement.send_danmu(conn, engine, fan, vid, "nice", 7.0, now=NOW + 2),
            engagement.send_danmu(conn, engine, fan, vid, "late", 50.0, now=NOW + 3),
        ]
        return vid, ids

    def test_window(self, conn, danmu):
        vid, (lol_late, lol_early, nice, late) = danmu
        assert engagement.display_danmu(conn, vid, 0.0, 20.0) == [lol_early, nice, lol_late]
        assert engagement.display_danmu(conn, vid, 7.0, 7.0) == [nice]

    def test_filtered_keeps_first_posted(self, conn, danmu):
        vid, (lol_late, lol_early, nice, late) = danmu
        assert engagement.display_danmu(conn, vid, 0.0, 60.0, filtered=True) == [lol_early, nice, late]

    @pytest.mark.parametrize("start, end", [(-1.0, 5.0), (10.0, 5.0), (0.0, 61.0)])
    def test_bad_window(self, conn, danmu, start, end):
        vid, _ = danmu
        with pytest.raises(InvalidArgument):
            engagement.display_danmu(conn, vid, start, end)


class TestLikeDanmu:
    def test_toggle(self, conn, engine, cast, make_user):
        _, fan, _, vid = cast
        other = make_user("other")
        engagement.watch_video(conn, engine, fan, vid, 5.0)
        danmu_id = engagement.send_danmu(conn, engine, fan, vid, "hey", 2.0)

        with pytest.raises(Forbidden):
            engagement.like_danmu(conn, other, danmu_id)

        engagement.watch_video(conn, engine, other, vid, 5.0)
        assert engagement.like_danmu(conn, other, danmu_id) is True
        assert ledger.get_danmu(conn, danmu_id).liked_by == {other.mid}
        assert engagement.like_danmu(conn, other, danmu_id) is False
        assert ledger.get_danmu(conn, danmu_id).liked_by == set()

    def test_unknown_danmu(self, conn, cast):
        _, fan, _, _ = cast
        with pytest.raises(NotFound):
            engagement.like_danmu(conn, fan, 12345)
