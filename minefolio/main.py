"""
Minefolio Feed - FastAPI application
Home feed aggregation, cron-triggered cache refresh, favorites cookie
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import settings
from minefolio.cache import CacheManager, FeedKind
from minefolio.db import get_db, init_db
from minefolio.errors import InvalidCronAuth, MinefolioError
from minefolio.favorites import (
    COOKIE_MAX_AGE,
    FAVORITES_COOKIE_NAME,
    add_to_favorites,
    encode_favorites,
    parse_favorites,
    remove_from_favorites,
)
from minefolio.feed import FeedAggregator
from minefolio.refresh import PacemanCacheRefresher
from minefolio.refresh.paceman_cache import (
    get_main_paces,
    get_nether_enter_count,
    get_recent_paces_from_cache,
)
from minefolio.services import (
    get_aggregator,
    get_cache_manager,
    get_paceman_refresher,
    get_youtube_refresher,
)
from minefolio.utils.helpers import to_iso, utcnow

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Minefolio Feed"

app = FastAPI(
    title=APP_NAME,
    description="Live PaceMan, Twitch and YouTube feeds for registered speedrunners",
    version=APP_VERSION,
)

# Errors a cron action reports as a JSON 500 instead of crashing
CRON_ERRORS = (MinefolioError, SQLAlchemyError, TimeoutError)


def get_cron_secret() -> Optional[str]:
    return settings.cron_secret


def require_cron_auth(
    authorization: Optional[str] = Header(None),
    cron_secret: Optional[str] = Depends(get_cron_secret),
) -> None:
    """
    Bearer token check for cron endpoints.

    Without a configured secret every call is rejected.
    """
    if not cron_secret or not authorization:
        raise InvalidCronAuth("missing credentials")
    expected = f"Bearer {cron_secret}".encode()
    if not hmac.compare_digest(authorization.encode(), expected):
        raise InvalidCronAuth("bearer token mismatch")


def _timestamp() -> str:
    return to_iso(utcnow())


def _cron_failure(error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(error), "timestamp": _timestamp()},
    )


@app.exception_handler(InvalidCronAuth)
def invalid_cron_auth_handler(request: Request, exc: InvalidCronAuth):
    logger.warning(f"Unauthorized cron request to {request.url.path}: {exc}")
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@app.on_event("startup")
def on_startup():
    init_db()
    logger.info(f"{APP_NAME} {APP_VERSION} started")


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "minefolio-feed"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(cache: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return cache.get_stats()


# =============================================================================
# HOME FEED
# =============================================================================

@app.get("/api/home-feed")
def home_feed(
    request: Request,
    feed_type: Optional[str] = Query(None, alias="type", description="Feed kind"),
    aggregator: FeedAggregator = Depends(get_aggregator),
):
    """
    One section of the home page.

    Example: /api/home-feed?type=live-runs

    Upstream failures produce an empty section, never an error status.
    """
    kind = FeedKind.parse(feed_type)
    if kind is None:
        return JSONResponse(status_code=400, content={"error": "Invalid feed type"})

    favorites = parse_favorites(request.cookies.get(FAVORITES_COOKIE_NAME))
    result = aggregator.get_feed(kind, favorites)

    return JSONResponse(
        content=result.to_dict(),
        headers={
            "Cache-Control": result.cache_control,
            "Vary": "Cookie",
            "X-Cache-Source": result.meta.cache_source,
        },
    )


# =============================================================================
# PACEMAN HISTORY
# =============================================================================

@app.get("/api/paceman/recent")
def paceman_recent(
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Newest runs from the weekly history table (refreshed hourly)."""
    return {"paces": get_recent_paces_from_cache(db, limit)}


@app.get("/api/players/{mcid}/paces")
def player_paces(
    mcid: str,
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    """
    One player's week: runs that ended at nether entry and runs that
    reached the second structure or later.
    """
    return {
        "mcid": mcid,
        "netherEnterCount": get_nether_enter_count(db, mcid),
        "mainPaces": get_main_paces(db, mcid, limit),
    }


# =============================================================================
# CRON
# =============================================================================

@app.get("/api/cron/youtube-update", dependencies=[Depends(require_cron_auth)])
def cron_youtube_update(
    action: str = Query("update", description="update | verify | live"),
    refresher=Depends(get_youtube_refresher),
):
    """
    YouTube table refresh.

    - update: new uploads (every 2 hours)
    - verify: availability check (twice a day)
    - live: live and upcoming broadcasts (every 5 minutes)
    """
    if refresher is None:
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "YouTube API key not configured", "timestamp": _timestamp()},
        )

    actions = {
        "update": refresher.refresh_new_videos,
        "verify": refresher.verify_videos,
        "live": refresher.refresh_live_streams,
    }
    if action not in actions:
        return JSONResponse(status_code=400, content={"success": False, "error": f"Unknown action: {action}"})

    logger.info(f"YouTube cron started: {action}")
    try:
        result = actions[action]()
    except CRON_ERRORS as e:
        logger.exception(f"YouTube cron {action} failed")
        return _cron_failure(e)

    return {"success": True, "action": action, **result, "timestamp": _timestamp()}


@app.get("/api/cron/update-paceman-cache", dependencies=[Depends(require_cron_auth)])
def cron_update_paceman_cache(
    refresher: PacemanCacheRefresher = Depends(get_paceman_refresher),
):
    """Weekly PaceMan history refresh (hourly)."""
    logger.info("PaceMan cron started")
    try:
        result = refresher.refresh()
    except CRON_ERRORS as e:
        logger.exception("PaceMan cron failed")
        return _cron_failure(e)

    if result["usersCount"] == 0:
        message = "No users with MCID found"
    else:
        message = "PaceMan cache updated successfully"
    return {"success": True, "message": message, **result, "timestamp": _timestamp()}


# =============================================================================
# FAVORITES
# =============================================================================

class FavoriteUpdate(BaseModel):
    """Body for POST /api/favorites."""
    mcid: Optional[str] = None
    action: Optional[str] = None  # "add" | "remove"


@app.get("/api/favorites")
def list_favorites(request: Request):
    return {"favorites": parse_favorites(request.cookies.get(FAVORITES_COOKIE_NAME))}


@app.post("/api/favorites")
def update_favorites(body: FavoriteUpdate, request: Request):
    """Add or remove one favorite; the new list is written back to the cookie."""
    if not body.mcid or body.action not in ("add", "remove"):
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    current = parse_favorites(request.cookies.get(FAVORITES_COOKIE_NAME))
    if body.action == "add":
        favorites = add_to_favorites(current, body.mcid)
    else:
        favorites = remove_from_favorites(current, body.mcid)

    response = JSONResponse(content={"favorites": favorites})
    response.set_cookie(
        FAVORITES_COOKIE_NAME,
        encode_favorites(favorites),
        max_age=COOKIE_MAX_AGE,
        path="/",
        samesite="lax",
    )
    return response
