from contextlib import asynccontextmanager, contextmanager

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vidcore.app.config import settings
from vidcore.app.logging_setup import setup_logging
from vidcore.app.db import connect, get_db_path, init_db
from vidcore.engine import catalog, engagement, hotspot, idcodec, recommend
from vidcore.engine.counters import CounterEngine
from vidcore.engine.errors import (
    Conflict,
    CoreError,
    Forbidden,
    InvalidArgument,
    MalformedCode,
    NotFound,
)
from vidcore.engine.search import SearchIndex

setup_logging(settings.log_level, settings.engine_log_level or None)

_STATUS_BY_ERROR = {
    NotFound: 404,
    InvalidArgument: 400,
    MalformedCode: 400,
    Forbidden: 403,
    Conflict: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ensure DB exists
    db_path = get_db_path()
    conn = connect(db_path)
    init_db(conn)
    conn.close()

    # one engine per process: the per-video and per-viewer locks live on these
    app.state.db_path = db_path
    app.state.counters = CounterEngine(db_path)
    app.state.search = SearchIndex(app.state.counters)

    yield
    # nothing to clean up for sqlite here


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    status = next((s for cls, s in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@contextmanager
def _db():
    conn = connect(app.state.db_path)
    try:
        yield conn
    finally:
        conn.close()


def _codes(video_ids):
    return [idcodec.encode(v) for v in video_ids]


def _counters_body(bv, c):
    return {
        "bv": bv,
        "like_count": c.like_count,
        "coin_count": c.coin_count,
        "fav_count": c.fav_count,
        "view_count": c.view_count,
        "danmu_count": c.danmu_count,
        "view_time_sum": c.view_time_sum,
        "score": c.score,
    }


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name, "env": settings.app_env}


@app.get("/")
def root():
    return {"message": "Video core API is running", "docs": "/docs", "health": "/health"}


# Videos
class VideoInfo(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    duration: float = Field(..., gt=0)
    public_time: int = Field(..., ge=0)  # unix timestamp


class WatchEvent(BaseModel):
    seconds: float = Field(..., ge=0)


class DanmuPost(BaseModel):
    content: str = Field(..., min_length=1)
    time: float = Field(..., ge=0)


@app.post("/videos")
def post_video(info: VideoInfo, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.post_video(
            conn, viewer, info.title, info.description, info.duration, info.public_time
        )
    return {"bv": idcodec.encode(video_id)}


@app.put("/videos/{bv}")
def update_video(bv: str, info: VideoInfo, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        catalog.update_video_info(
            conn, viewer, video_id, info.title, info.description, info.duration, info.public_time
        )
    return {"status": "ok"}


@app.delete("/videos/{bv}")
def delete_video(bv: str, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        catalog.delete_video(conn, app.state.counters, viewer, video_id)
    return {"status": "ok"}


@app.post("/videos/{bv}/review")
def review_video(bv: str, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        reviewed = catalog.review_video(conn, viewer, video_id)
    return {"bv": bv, "reviewed": reviewed}


@app.get("/videos/{bv}/counters")
def video_counters(bv: str):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
    return _counters_body(bv, app.state.counters.counters(video_id))


@app.get("/videos/{bv}/score")
def video_score(bv: str):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
    return {"bv": bv, "score": app.state.counters.score(video_id)}


@app.post("/videos/{bv}/recount")
def recount_video(bv: str, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        c = catalog.recount_video(conn, app.state.counters, viewer, video_id)
    return _counters_body(bv, c)


@app.get("/videos/{bv}/view-rate")
def view_rate(bv: str):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
        rate = catalog.average_view_rate(conn, video_id)
    return {"bv": bv, "average_view_rate": rate}


@app.get("/videos/{bv}/hotspot")
def video_hotspot(bv: str):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
        buckets = hotspot.hotspot(conn, video_id, settings.hotspot_bucket_width)
    return {"bv": bv, "buckets": sorted(buckets)}


@app.get("/videos/{bv}/related")
def video_related(bv: str):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
        ids = recommend.related(conn, video_id, settings.related_limit)
    return {"bv": bv, "related": _codes(ids)}


# Engagement
def _engage(bv: str, mid: int, action):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        active = action(conn, app.state.counters, viewer, video_id)
    return {"bv": bv, "active": active}


@app.post("/videos/{bv}/like")
def like_video(bv: str, mid: int = Query(..., ge=1)):
    return _engage(bv, mid, engagement.like_video)


@app.post("/videos/{bv}/favorite")
def collect_video(bv: str, mid: int = Query(..., ge=1)):
    return _engage(bv, mid, engagement.collect_video)


@app.post("/videos/{bv}/coin")
def coin_video(bv: str, mid: int = Query(..., ge=1)):
    out = _engage(bv, mid, engagement.coin_video)
    with _db() as conn:
        out["coin"] = catalog.get_coin(conn, mid)
    return out


@app.post("/videos/{bv}/view")
def watch_video(bv: str, ev: WatchEvent, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        c = engagement.watch_video(conn, app.state.counters, viewer, video_id, ev.seconds)
    return {"bv": bv, "view_count": c.view_count, "score": c.score}


@app.post("/users/{followee}/follow")
def follow_user(followee: int, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        following = engagement.follow(conn, viewer, followee)
    return {"followee": followee, "following": following}


# Danmu
@app.post("/videos/{bv}/danmu")
def send_danmu(bv: str, body: DanmuPost, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        video_id = catalog.resolve_code(conn, bv)
        danmu_id = engagement.send_danmu(
            conn, app.state.counters, viewer, video_id, body.content, body.time
        )
    return {"id": danmu_id}


@app.get("/videos/{bv}/danmu")
def display_danmu(
    bv: str,
    start: float = Query(..., ge=0),
    end: float = Query(..., ge=0),
    filtered: bool = Query(False, alias="filter"),
):
    with _db() as conn:
        video_id = catalog.resolve_code(conn, bv)
        ids = engagement.display_danmu(conn, video_id, start, end, filtered=filtered)
    return {"bv": bv, "danmu": ids}


@app.post("/danmu/{danmu_id}/like")
def like_danmu(danmu_id: int, mid: int = Query(..., ge=1)):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
        liked = engagement.like_danmu(conn, viewer, danmu_id)
    return {"id": danmu_id, "liked": liked}


# Search
@app.get("/search")
def search(
    mid: int = Query(..., ge=1),
    keywords: str = Query(..., min_length=1),
    page_size: int = Query(10, ge=1, le=100),
    page_num: int = Query(1, ge=1),
):
    with _db() as conn:
        viewer = catalog.get_viewer(conn, mid)
    ids = app.state.search.search(viewer, keywords, page_size, page_num)
    return {"keywords": keywords, "items": _codes(ids)}


# Recommendations
@app.get("/recommendations/trending")
def trending(
    page_size: int = Query(10, ge=1, le=100),
    page_num: int = Query(1, ge=1),
):
    with _db() as conn:
        ids = recommend.trending(conn, page_size, page_num)
    return {"items": _codes(ids)}


@app.get("/recommendations/videos")
def videos_for_user(
    mid: int = Query(..., ge=1),
    page_size: int = Query(10, ge=1, le=100),
    page_num: int = Query(1, ge=1),
):
    with _db() as conn:
        ids = recommend.for_user(conn, mid, page_size, page_num)
    return {"mid": mid, "items": _codes(ids)}


@app.get("/recommendations/friends")
def friends_for_user(
    mid: int = Query(..., ge=1),
    page_size: int = Query(10, ge=1, le=100),
    page_num: int = Query(1, ge=1),
):
    with _db() as conn:
        mids = recommend.friend_suggestions(conn, mid, page_size, page_num)
    return {"mid": mid, "items": mids}
