from typing import Optional

from fastapi import APIRouter, Depends, Request
import structlog

from dayplan.api.deps import get_places_client, performance_timer
from dayplan.api.schemas import PlaceDetailsRequest, PlaceDetailsResponse
from dayplan.core.ratelimit import limiter
from dayplan.core.security import get_current_user
from dayplan.core.settings import settings
from dayplan.db.models import User
from dayplan.services.places import PlacesClient
from dayplan.services.planner import PlanService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/places", tags=["places"])


@router.post("/details",
    response_model=PlaceDetailsResponse,
    responses={
        400: {"description": "Location is missing"},
        404: {"description": "Location not found"},
        502: {"description": "Maps provider error"},
        503: {"description": "Maps provider is not configured"},
    },
    summary="Look up a place",
    description="Place id, photo URL, coordinates and timezone, plus travel time from origin when given"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def place_details(
    request: Request,
    payload: PlaceDetailsRequest,
    current_user: User = Depends(get_current_user),
    places: Optional[PlacesClient] = Depends(get_places_client),
):
    async with performance_timer("place_details"):
        service = PlanService(session=None, places=places)
        return await service.place_details(payload.location, payload.mode, payload.origin)
