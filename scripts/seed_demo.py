#!/usr/bin/env python3
import argparse
import random
import sqlite3
import time

from vidcore.app.db import connect, get_db_path, init_db
from vidcore.engine import catalog, engagement, idcodec
from vidcore.engine.catalog import Identity
from vidcore.engine.counters import CounterEngine, counters_drifted

WORDS = [
    "minecraft", "speedrun", "cooking", "piano", "cat", "travel", "vlog",
    "review", "anime", "guitar", "tutorial", "python", "football", "drawing",
]


def seed_users(conn: sqlite3.Connection, n: int, rng: random.Random) -> list[int]:
    mids = []
    for i in range(n):
        identity = Identity.SUPERUSER if i == 0 else Identity.USER
        mids.append(
            catalog.add_user(
                conn,
                name=f"user{i:04d}",
                level=rng.randint(0, 6),
                coin=rng.randint(0, 20),
                identity=identity,
            )
        )
    return mids


def seed_videos(conn: sqlite3.Connection, mids: list[int], n: int, rng: random.Random) -> list[int]:
    now = int(time.time())
    admin = catalog.get_viewer(conn, mids[0])
    video_ids = []
    for i in range(n):
        owner = catalog.get_viewer(conn, rng.choice(mids[1:]))
        title = " ".join(rng.sample(WORDS, 3)) + f" #{i}"
        video_id = catalog.post_video(
            conn,
            owner,
            title=title,
            description=" ".join(rng.sample(WORDS, 4)),
            duration=float(rng.randint(30, 1200)),
            public_time=now,
            now=now,
        )
        catalog.review_video(conn, admin, video_id, now=now)
        video_ids.append(video_id)
    return video_ids


def seed_follows(conn: sqlite3.Connection, mids: list[int], per_user: int, rng: random.Random) -> None:
    for mid in mids:
        viewer = catalog.get_viewer(conn, mid)
        for followee in rng.sample(mids, min(per_user, len(mids))):
            if followee != mid and rng.random() < 0.8:
                engagement.follow(conn, viewer, followee)


def seed_engagement(
    conn: sqlite3.Connection,
    engine: CounterEngine,
    mids: list[int],
    video_ids: list[int],
    views_per_user: int,
    rng: random.Random,
) -> None:
    for mid in mids[1:]:
        viewer = catalog.get_viewer(conn, mid)
        for video_id in rng.sample(video_ids, min(views_per_user, len(video_ids))):
            video = catalog.get_video(conn, video_id)
            if video.owner == mid:
                continue
            seconds = round(rng.uniform(0, video.duration), 1)
            engagement.watch_video(conn, engine, viewer, video_id, seconds)
            if rng.random() < 0.4:
                engagement.like_video(conn, engine, viewer, video_id)
            if rng.random() < 0.15:
                engagement.collect_video(conn, engine, viewer, video_id)
            if rng.random() < 0.1:
                engagement.coin_video(conn, engine, viewer, video_id)
            if rng.random() < 0.3:
                t = round(rng.uniform(0, video.duration), 1)
                engagement.send_danmu(conn, engine, viewer, video_id, rng.choice(WORDS), t)


def verify_counters(engine: CounterEngine, video_ids: list[int]) -> int:
    drifted = 0
    for video_id in video_ids:
        before = engine.counters(video_id)
        if counters_drifted(before, engine.recount(video_id)):
            drifted += 1
    return drifted


def clear_tables(conn: sqlite3.Connection) -> None:
    # delete child tables first (due to foreign keys); id_issuer is kept so ids are never reused
    for table in (
        "danmu_likes", "danmu", "like_video", "coin_video", "fav_video",
        "view_video", "follows", "video_counters", "videos", "users",
    ):
        conn.execute(f"DELETE FROM {table};")
    conn.commit()


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--users", type=int, default=50)
    ap.add_argument("--videos", type=int, default=200)
    ap.add_argument("--follows-per-user", type=int, default=8)
    ap.add_argument("--views-per-user", type=int, default=20)
    ap.add_argument("--seed", type=int, default=42)
    ap.add_argument("--reset", action="store_true", help="Clear tables before seeding")
    ap.add_argument("--verify", action="store_true", help="Recount every seeded video and report drift")
    args = ap.parse_args()

    if args.users < 2:
        raise SystemExit("--users must be at least 2 (one superuser plus uploaders)")
    if args.videos < 1:
        raise SystemExit("--videos must be at least 1")

    rng = random.Random(args.seed)

    conn = connect()
    init_db(conn)

    if args.reset:
        clear_tables(conn)

    engine = CounterEngine(get_db_path())
    mids = seed_users(conn, args.users, rng)
    video_ids = seed_videos(conn, mids, args.videos, rng)
    seed_follows(conn, mids, args.follows_per_user, rng)
    seed_engagement(conn, engine, mids, video_ids, args.views_per_user, rng)

    if args.verify:
        drifted = verify_counters(engine, video_ids)
        print(f"Verified counters: {drifted} of {len(video_ids)} videos drifted.")

    conn.close()
    print(f"Seeding complete: {len(mids)} users, {len(video_ids)} videos "
          f"({idcodec.encode(video_ids[0])} .. {idcodec.encode(video_ids[-1])}).")


if __name__ == "__main__":
    main()
