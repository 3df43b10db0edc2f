"""
For-You Routes.

Personalized feed, similar-product reel, behavioral event intake and
profile management. Identity comes from the X-Customer-Id header; requests
without it act on the guest profile.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from core.logging import get_logger
from foryou.errors import StorageError
from foryou.models import FeedPage, ForYouEvent, Gender, ReelPage
from foryou.reel_service import ReelService
from foryou.service import ForYouService
from foryou.storage import Identity
from foryou.tracking import EventTracker


logger = get_logger(__name__)

router = APIRouter(prefix="/api/for-you", tags=["For You"])


# =============================================================================
# Dependencies
# =============================================================================

def get_identity(x_customer_id: Optional[str] = Header(default=None)) -> Identity:
    """Authenticated customer when X-Customer-Id is present, otherwise guest."""
    if x_customer_id and x_customer_id.strip():
        return Identity.customer(x_customer_id.strip())
    return Identity.guest()


def get_feed_service(request: Request) -> ForYouService:
    return request.app.state.feed_service


def get_reel_service(request: Request) -> ReelService:
    return request.app.state.reel_service


def get_tracker(request: Request) -> EventTracker:
    return request.app.state.tracker


# =============================================================================
# Request/Response Models
# =============================================================================

class GenderUpdateRequest(BaseModel):
    """Request to set the profile's shopping gender."""
    gender: str = Field(..., description="'male', 'female' or 'unknown'; anything else is stored as 'unknown'")


class EventAcceptedResponse(BaseModel):
    accepted: bool
    pending: int


class ProfileResponse(BaseModel):
    scope: str
    gender: Gender
    profile: Dict[str, Any]


def _profile_response(identity: Identity, service: ForYouService) -> ProfileResponse:
    profile = service.get_profile(identity)
    return ProfileResponse(scope=identity.scope, gender=profile.gender, profile=profile.to_dict())


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/feed", response_model=FeedPage, summary="Personalized product feed page")
async def get_feed(
    page_size: Optional[int] = Query(default=None, ge=1, le=200),
    cursor: Optional[str] = Query(default=None),
    refresh_key: int = Query(default=0, ge=0),
    debug: bool = Query(default=False, description="Include the debug payload (debug mode only)"),
    identity: Identity = Depends(get_identity),
    service: ForYouService = Depends(get_feed_service),
) -> FeedPage:
    return await run_in_threadpool(
        service.get_feed_page,
        identity,
        page_size=page_size,
        cursor=cursor,
        refresh_key=refresh_key,
        include_debug=debug,
    )


@router.get("/reel/{seed_handle}", response_model=ReelPage, summary="Similar-product reel around a seed")
async def get_reel(
    seed_handle: str,
    page_size: Optional[int] = Query(default=None, ge=1, le=100),
    cursor: Optional[str] = Query(default=None),
    debug: bool = Query(default=False, description="Include the debug payload (debug mode only)"),
    identity: Identity = Depends(get_identity),
    service: ReelService = Depends(get_reel_service),
) -> ReelPage:
    return await run_in_threadpool(
        service.get_reel_page,
        identity,
        seed_handle,
        cursor=cursor,
        page_size=page_size,
        include_debug=debug,
    )


@router.post("/events", status_code=202, response_model=EventAcceptedResponse, summary="Record a behavioral event")
async def post_event(
    event: ForYouEvent,
    identity: Identity = Depends(get_identity),
    tracker: EventTracker = Depends(get_tracker),
) -> EventAcceptedResponse:
    """
    Buffer one event. It is folded into the profile on the next feed or
    reel request (or profile read).
    """
    accepted = tracker.track(identity, event)
    return EventAcceptedResponse(accepted=accepted, pending=tracker.pending(identity))


@router.get("/profile", response_model=ProfileResponse, summary="Current profile")
async def get_profile(
    identity: Identity = Depends(get_identity),
    service: ForYouService = Depends(get_feed_service),
    tracker: EventTracker = Depends(get_tracker),
) -> ProfileResponse:
    try:
        tracker.flush(identity)
    except StorageError as e:
        logger.warning("Event flush failed", scope=identity.scope, error=str(e))
    except Exception as e:
        logger.exception("Event flush crashed", scope=identity.scope, error=str(e))
    return _profile_response(identity, service)


@router.delete("/profile", status_code=204, summary="Reset the profile")
async def delete_profile(
    identity: Identity = Depends(get_identity),
    service: ForYouService = Depends(get_feed_service),
    tracker: EventTracker = Depends(get_tracker),
) -> None:
    try:
        service.reset_profile(identity)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Profile store unavailable: {e}")
    tracker.discard(identity)


@router.put("/profile/gender", response_model=ProfileResponse, summary="Set the shopping gender")
async def put_gender(
    request: GenderUpdateRequest,
    identity: Identity = Depends(get_identity),
    service: ForYouService = Depends(get_feed_service),
) -> ProfileResponse:
    try:
        profile = service.set_gender(identity, request.gender)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=f"Profile store unavailable: {e}")
    return ProfileResponse(scope=identity.scope, gender=profile.gender, profile=profile.to_dict())


@router.post("/profile/login", response_model=ProfileResponse, summary="Merge the guest profile at sign-in")
async def login_merge(
    identity: Identity = Depends(get_identity),
    service: ForYouService = Depends(get_feed_service),
) -> ProfileResponse:
    if not identity.is_customer:
        raise HTTPException(status_code=400, detail="X-Customer-Id header is required")
    profile = service.ensure_profile_on_login(identity)
    return ProfileResponse(scope=identity.scope, gender=profile.gender, profile=profile.to_dict())
