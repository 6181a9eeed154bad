SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
  mid        INTEGER PRIMARY KEY AUTOINCREMENT,
  name       TEXT NOT NULL UNIQUE,
  level      INTEGER NOT NULL DEFAULT 0,
  coin       INTEGER NOT NULL DEFAULT 0 CHECK (coin >= 0),
  identity   TEXT NOT NULL DEFAULT 'USER' CHECK (identity IN ('USER', 'SUPERUSER')),
  created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- high-water marks for id issuance (never decremented)
CREATE TABLE IF NOT EXISTS id_issuer (
  name       TEXT PRIMARY KEY,
  last_value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS videos (
  id          INTEGER PRIMARY KEY,              -- issued by id_issuer, never reused
  owner       INTEGER NOT NULL,
  title       TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  duration    REAL NOT NULL,
  commit_time INTEGER NOT NULL,                 -- unix timestamp
  public_time INTEGER,                          -- NULL = public immediately
  reviewer    INTEGER,                          -- NULL = not reviewed yet
  review_time INTEGER,
  FOREIGN KEY (owner) REFERENCES users(mid),
  FOREIGN KEY (reviewer) REFERENCES users(mid)
);

CREATE INDEX IF NOT EXISTS idx_videos_owner ON videos(owner);
CREATE INDEX IF NOT EXISTS idx_videos_public_time ON videos(public_time);

CREATE TABLE IF NOT EXISTS video_counters (
  video_id      INTEGER PRIMARY KEY,
  like_count    INTEGER NOT NULL DEFAULT 0 CHECK (like_count >= 0),
  coin_count    INTEGER NOT NULL DEFAULT 0 CHECK (coin_count >= 0),
  fav_count     INTEGER NOT NULL DEFAULT 0 CHECK (fav_count >= 0),
  view_count    INTEGER NOT NULL DEFAULT 0 CHECK (view_count >= 0),
  danmu_count   INTEGER NOT NULL DEFAULT 0 CHECK (danmu_count >= 0),
  view_time_sum REAL NOT NULL DEFAULT 0,
  score         REAL NOT NULL DEFAULT 0,       -- rewritten with every counter change
  FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE INDEX IF NOT EXISTS idx_video_counters_rank
ON video_counters(score DESC, view_count DESC);

-- engagement edges: existence only

CREATE TABLE IF NOT EXISTS like_video (
  mid      INTEGER NOT NULL,
  video_id INTEGER NOT NULL,
  PRIMARY KEY (mid, video_id),
  FOREIGN KEY (mid) REFERENCES users(mid),
  FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE TABLE IF NOT EXISTS coin_video (
  mid      INTEGER NOT NULL,
  video_id INTEGER NOT NULL,
  PRIMARY KEY (mid, video_id),
  FOREIGN KEY (mid) REFERENCES users(mid),
  FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE TABLE IF NOT EXISTS fav_video (
  mid      INTEGER NOT NULL,
  video_id INTEGER NOT NULL,
  PRIMARY KEY (mid, video_id),
  FOREIGN KEY (mid) REFERENCES users(mid),
  FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE INDEX IF NOT EXISTS idx_like_video_video ON like_video(video_id);
CREATE INDEX IF NOT EXISTS idx_coin_video_video ON coin_video(video_id);
CREATE INDEX IF NOT EXISTS idx_fav_video_video ON fav_video(video_id);

CREATE TABLE IF NOT EXISTS view_video (
  mid       INTEGER NOT NULL,
  video_id  INTEGER NOT NULL,
  view_time REAL NOT NULL CHECK (view_time >= 0),
  PRIMARY KEY (mid, video_id),
  FOREIGN KEY (mid) REFERENCES users(mid),
  FOREIGN KEY (video_id) REFERENCES videos(id)
);

CREATE INDEX IF NOT EXISTS idx_view_video_video ON view_video(video_id);

CREATE TABLE IF NOT EXISTS follows (
  follower INTEGER NOT NULL,
  followee INTEGER NOT NULL,
  PRIMARY KEY (follower, followee),
  CHECK (follower <> followee),
  FOREIGN KEY (follower) REFERENCES users(mid),
  FOREIGN KEY (followee) REFERENCES users(mid)
);

CREATE INDEX IF NOT EXISTS idx_follows_followee ON follows(followee);

-- timed comments

CREATE TABLE IF NOT EXISTS danmu (
  id        INTEGER PRIMARY KEY AUTOINCREMENT,
  video_id  INTEGER NOT NULL,
  mid       INTEGER NOT NULL,
  dis_time  REAL NOT NULL CHECK (dis_time >= 0),
  content   TEXT NOT NULL,
  post_time INTEGER NOT NULL,                  -- unix timestamp
  FOREIGN KEY (video_id) REFERENCES videos(id),
  FOREIGN KEY (mid) REFERENCES users(mid)
);

CREATE INDEX IF NOT EXISTS idx_danmu_video_time ON danmu(video_id, dis_time);

CREATE TABLE IF NOT EXISTS danmu_likes (
  mid      INTEGER NOT NULL,
  danmu_id INTEGER NOT NULL,
  PRIMARY KEY (mid, danmu_id),
  FOREIGN KEY (mid) REFERENCES users(mid),
  FOREIGN KEY (danmu_id) REFERENCES danmu(id)
);
"""
