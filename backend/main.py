import logging
import os
import random
import time
from collections import deque
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

try:
    from backend.app.schemas import QueryValidationError, SearchQuery
    from backend.app.services.pipeline import ViralSearchPipeline
    from backend.app.services.result_cache import CACHE_TTL_SECONDS, ResultCache
    from backend.app.services.scoring import format_viral_score, viral_level
    from backend.app.services.sources import SimulatedSource, YouTubeSource
    from backend.app.services.storage import (
        AlreadyCollectedError,
        CollectionStore,
        ItemNotFoundError,
        JsonDocumentStore,
        StorageError,
    )
    from backend.app.services.usage import DEFAULT_DAILY_QUOTA, DailyResetScheduler, UsageMeter
except ModuleNotFoundError:
    from app.schemas import QueryValidationError, SearchQuery
    from app.services.pipeline import ViralSearchPipeline
    from app.services.result_cache import CACHE_TTL_SECONDS, ResultCache
    from app.services.scoring import format_viral_score, viral_level
    from app.services.sources import SimulatedSource, YouTubeSource
    from app.services.storage import (
        AlreadyCollectedError,
        CollectionStore,
        ItemNotFoundError,
        JsonDocumentStore,
        StorageError,
    )
    from app.services.usage import DEFAULT_DAILY_QUOTA, DailyResetScheduler, UsageMeter


# ---------------------------
# Config
# ---------------------------

load_dotenv()


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_flag(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes"}


logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY")
if not YOUTUBE_API_KEY:
    logger.warning("YOUTUBE_API_KEY is not set; youtube searches will fail until it is configured")

DATA_DIR = Path(os.getenv("DATA_DIR") or (Path(__file__).resolve().parent / "data_runtime"))
COLLECTED_ITEMS_FILE = DATA_DIR / "collected-assets.json"
SEARCH_CACHE_FILE = DATA_DIR / "search-cache.json"

YOUTUBE_DAILY_QUOTA = env_int("YOUTUBE_DAILY_QUOTA", DEFAULT_DAILY_QUOTA)
YOUTUBE_REQUEST_TIMEOUT_SECONDS = env_float("YOUTUBE_REQUEST_TIMEOUT_SECONDS", 15.0)
YOUTUBE_MAX_RETRIES = env_int("YOUTUBE_MAX_RETRIES", 2)
SIMULATED_LATENCY_SECONDS = env_float("SIMULATED_LATENCY_SECONDS", 0.0)
SOURCE_TIMEOUT_SECONDS = env_float("SOURCE_TIMEOUT_SECONDS", 30.0)
USAGE_RESET_HOUR_UTC = env_int("USAGE_RESET_HOUR_UTC", 0)
USAGE_RESET_SCHEDULER_ENABLED = env_flag("USAGE_RESET_SCHEDULER", True)

API_RATE_LIMIT_WINDOW_SECONDS = 60
API_RATE_LIMIT_MAX_REQUESTS = env_int("API_RATE_LIMIT_MAX_REQUESTS", 30)
API_RATE_LIMIT_BUCKETS: dict[str, deque[float]] = {}

DEFAULT_COUNTRIES = "KR"
DEFAULT_PLATFORMS = "youtube"


# ---------------------------
# Shared state
# ---------------------------

USAGE_METER = UsageMeter(total=YOUTUBE_DAILY_QUOTA)
SEARCH_CACHE = ResultCache(JsonDocumentStore(SEARCH_CACHE_FILE, default={}), ttl_seconds=CACHE_TTL_SECONDS)
COLLECTION = CollectionStore(JsonDocumentStore(COLLECTED_ITEMS_FILE, default=[]))
USAGE_RESET_SCHEDULER = DailyResetScheduler(USAGE_METER, reset_hour_utc=USAGE_RESET_HOUR_UTC)


def build_sources() -> dict[str, Any]:
    return {
        "youtube": YouTubeSource(
            YOUTUBE_API_KEY,
            timeout=YOUTUBE_REQUEST_TIMEOUT_SECONDS,
            max_retries=YOUTUBE_MAX_RETRIES,
        ),
        "tiktok": SimulatedSource("tiktok", rng=random.Random(), latency_seconds=SIMULATED_LATENCY_SECONDS),
        "instagram": SimulatedSource("instagram", rng=random.Random(), latency_seconds=SIMULATED_LATENCY_SECONDS),
    }


PIPELINE = ViralSearchPipeline(
    build_sources(),
    SEARCH_CACHE,
    USAGE_METER,
    source_timeout=SOURCE_TIMEOUT_SECONDS,
)


class CollectRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str | None = Field(default=None, alias="videoId")
    status: str | None = None
    notes: str | None = None


# ---------------------------
# Helpers
# ---------------------------

def get_client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_api_rate_limit(request: Request, scope: str = "search") -> None:
    now_ts = time.time()
    key = f"{scope}:{get_client_ip(request)}"
    bucket = API_RATE_LIMIT_BUCKETS.get(key)
    if bucket is None:
        bucket = deque()
        API_RATE_LIMIT_BUCKETS[key] = bucket

    cutoff = now_ts - API_RATE_LIMIT_WINDOW_SECONDS
    while bucket and bucket[0] < cutoff:
        bucket.popleft()

    if len(bucket) >= API_RATE_LIMIT_MAX_REQUESTS:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please wait a minute and try again.",
        )

    bucket.append(now_ts)


def parse_bool(value: str | bool | None, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes"}


def serialize_items(items) -> list[dict[str, Any]]:
    serialized = []
    for item in items:
        entry = item.to_json()
        entry["viralLevel"] = viral_level(item.viral_score)
        entry["viralScoreLabel"] = format_viral_score(item.viral_score)
        serialized.append(entry)
    return serialized


def error_response(status_code: int, message: str, with_usage: bool = False) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": message}
    if with_usage:
        content["apiUsage"] = USAGE_METER.current()
    return JSONResponse(status_code=status_code, content=content)


def parse_cors_origins() -> tuple[list[str], bool]:
    raw = (os.getenv("CORS_ALLOWED_ORIGINS") or "").strip()
    if not raw:
        return ["http://localhost:3000"], True
    if raw == "*":
        return ["*"], False
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        return ["http://localhost:3000"], True
    return origins, True


# ---------------------------
# App setup
# ---------------------------

app = FastAPI()

cors_origins, cors_credentials = parse_cors_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup_schedule_usage_reset():
    if USAGE_RESET_SCHEDULER_ENABLED:
        USAGE_RESET_SCHEDULER.start()


@app.on_event("shutdown")
def on_shutdown_stop_usage_reset():
    USAGE_RESET_SCHEDULER.stop()


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/search-viral")
def search_viral(
    request: Request,
    countries: str = DEFAULT_COUNTRIES,
    platforms: str = DEFAULT_PLATFORMS,
    categories: str = "",
    time_range: str = Query("24", alias="timeRange"),
    min_views: str = Query("500000", alias="minViews"),
    use_cache: str = Query("true", alias="useCache"),
):
    """
    Ranked viral items for every requested (country, platform) pair.
    Comma-separated lists: countries=KR,US&platforms=youtube,tiktok
    """
    enforce_api_rate_limit(request, scope="search")

    try:
        query = SearchQuery.parse(
            countries=countries,
            platforms=platforms,
            categories=categories,
            time_range=time_range,
            min_views=min_views,
            use_cache=parse_bool(use_cache),
        )
    except QueryValidationError as exc:
        return error_response(400, str(exc), with_usage=True)

    try:
        result = PIPELINE.search(query)
    except Exception as exc:
        logger.exception("Viral search failed")
        return error_response(500, str(exc) or "Internal server error.", with_usage=True)

    resp: dict[str, Any] = {
        "success": True,
        "videos": serialize_items(result.items),
        "apiUsage": USAGE_METER.current(),
        "cached": result.cached,
    }
    if result.cached:
        info = result.cache_info or {}
        resp["cacheInfo"] = {
            "age": f"cached {info.get('ageMinutes', 0)} min ago",
            **info,
        }
    else:
        resp["searchInfo"] = result.search_info
    return resp


@app.post("/collect-video")
def collect_video(payload: CollectRequest, request: Request):
    enforce_api_rate_limit(request, scope="collect")
    item = payload.model_dump()
    if not item.get("id"):
        return error_response(400, "Item payload must include an id.")

    try:
        result = COLLECTION.add(item)
    except AlreadyCollectedError as exc:
        return error_response(400, str(exc))
    except StorageError as exc:
        return error_response(500, str(exc))

    stored = result["item"]
    logger.info("Collected %s (%s %s)", stored.get("title"), stored.get("platform"), stored.get("country"))
    return {
        "success": True,
        "message": "Item added to your collection.",
        "video": stored,
        "totalCollected": result["total"],
    }


@app.get("/my-assets")
def list_assets():
    items = COLLECTION.list_items()
    return {
        "success": True,
        "videos": items,
        "stats": COLLECTION.stats(items),
    }


@app.delete("/my-assets")
def remove_asset(video_id: str | None = Query(None, alias="videoId")):
    if not video_id:
        return error_response(400, "videoId is required.")
    try:
        removed = COLLECTION.remove(video_id)
    except ItemNotFoundError as exc:
        return error_response(404, str(exc))
    except StorageError as exc:
        return error_response(500, str(exc))
    return {
        "success": True,
        "message": "Item removed.",
        "video": removed,
    }


@app.put("/my-assets")
def update_asset(payload: StatusUpdateRequest):
    if not payload.video_id or not payload.status:
        return error_response(400, "videoId and status are required.")
    try:
        updated = COLLECTION.update_status(payload.video_id, payload.status, payload.notes)
    except ValueError as exc:
        return error_response(400, str(exc))
    except ItemNotFoundError as exc:
        return error_response(404, str(exc))
    except StorageError as exc:
        return error_response(500, str(exc))
    return {
        "success": True,
        "message": "Item status updated.",
        "video": updated,
    }


@app.get("/my-assets/export")
def export_assets():
    return Response(
        content=COLLECTION.export_csv(),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="my-assets.csv"'},
    )


@app.get("/api-usage")
def api_usage():
    return USAGE_METER.current()


@app.post("/api-usage/reset")
def reset_api_usage():
    USAGE_METER.reset_daily()
    return USAGE_METER.current()


@app.get("/cache/stats")
def cache_stats():
    return SEARCH_CACHE.stats()


@app.delete("/cache")
def clear_cache():
    SEARCH_CACHE.clear()
    return {"ok": True}
