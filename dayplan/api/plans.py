from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from dayplan.api.deps import get_places_client, get_plan_parser, performance_timer
from dayplan.api.schemas import (
    EventRead, EventUpdate, PlanCreate, PlanRead, PlanSummary,
    ScheduleStatusRead, TimelineRead,
)
from dayplan.core.nlp.parser import PlanParser
from dayplan.core.ratelimit import limiter
from dayplan.core.security import get_current_user
from dayplan.core.settings import settings
from dayplan.db.crud import delete_day_plan, get_user_day_plans
from dayplan.db.models import User
from dayplan.db.session import get_db_session
from dayplan.services.places import PlacesClient, TRAVEL_MODES
from dayplan.services.planner import (
    PlanService, serialize_event, serialize_plan, status_read, summarize_plan,
)

# Set up logging
logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/plans", tags=["plans"])

MODE_PATTERN = "^(" + "|".join(TRAVEL_MODES) + ")$"


@router.post("",
    response_model=PlanRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid plan text"},
        422: {"description": "No event in the plan has a usable start time"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Language model failed"},
        503: {"description": "Language model is not configured"},
    },
    summary="Create a day plan from free text",
    description="Parses the text, looks up each place, normalizes times to the place's timezone and stores the events"
)
@limiter.limit(settings.RATE_LIMIT_PARSE)
async def create_plan(
    request: Request,
    payload: PlanCreate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    parser: PlanParser = Depends(get_plan_parser),
    places: Optional[PlacesClient] = Depends(get_places_client),
):
    """Create a plan for one day"""
    async with performance_timer("plan_creation"):
        try:
            service = PlanService(session, parser=parser, places=places)
            plan, warnings = await service.create_plan(current_user, payload)
            logger.info("plan_created_for_user", plan_id=str(plan.id), user_id=str(current_user.id))
            return serialize_plan(plan, warnings)
        except HTTPException:
            raise
        except Exception as e:
            logger.error("plan_creation_error", error=str(e), error_type=type(e).__name__)
            raise HTTPException(status_code=500, detail="Failed to create plan")


@router.get("", response_model=List[PlanSummary])
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_plans(
    request: Request,
    plan_date: Optional[date] = Query(None, alias="date"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    plans = await get_user_day_plans(session, current_user.id, plan_date=plan_date, skip=skip, limit=limit)
    return [summarize_plan(p) for p in plans]


@router.get("/{plan_id}", response_model=PlanRead, responses={404: {"description": "Plan not found"}})
@limiter.limit(settings.RATE_LIMIT_READ)
async def read_plan(
    request: Request,
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    plan = await PlanService(session).get_plan(plan_id, current_user)
    return serialize_plan(plan)


@router.delete("/{plan_id}", status_code=204, responses={404: {"description": "Plan not found"}})
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def remove_plan(
    request: Request,
    plan_id: UUID,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    plan = await PlanService(session).get_plan(plan_id, current_user)
    await delete_day_plan(session, plan)
    return Response(status_code=204)


@router.patch("/{plan_id}/events/{event_id}",
    response_model=EventRead,
    responses={
        404: {"description": "Plan or event not found"},
        422: {"description": "Unreadable start or end time"},
    },
    summary="Edit one event",
    description="Rename, mark completed, or move an event; new times are read in the event's own timezone"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def patch_event(
    request: Request,
    plan_id: UUID,
    event_id: UUID,
    payload: EventUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    service = PlanService(session)
    plan = await service.get_plan(plan_id, current_user)
    event = await service.update_event(plan, event_id, payload)
    return serialize_event(event)


@router.get("/{plan_id}/timeline",
    response_model=TimelineRead,
    responses={404: {"description": "Plan not found"}},
    summary="Travel legs between events",
    description="Legs from home (origin or saved home location) and between consecutive events, with travel time, leave-by and buffer"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def read_timeline(
    request: Request,
    plan_id: UUID,
    mode: Optional[str] = Query(None, pattern=MODE_PATTERN),
    origin: Optional[str] = Query(None, max_length=500),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    places: Optional[PlacesClient] = Depends(get_places_client),
):
    async with performance_timer("timeline_build"):
        service = PlanService(session, places=places)
        plan = await service.get_plan(plan_id, current_user)
        return await service.build_timeline(plan, current_user, mode=mode, origin=origin)


@router.get("/{plan_id}/status",
    response_model=ScheduleStatusRead,
    responses={
        404: {"description": "Plan not found"},
        422: {"description": "Only one of lat/lng given"},
    },
    summary="Am I on schedule?",
    description="Schedule status now, optionally counting travel from the caller's position to the next event"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def read_status(
    request: Request,
    plan_id: UUID,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    mode: Optional[str] = Query(None, pattern=MODE_PATTERN),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    places: Optional[PlacesClient] = Depends(get_places_client),
):
    service = PlanService(session, places=places)
    plan = await service.get_plan(plan_id, current_user)
    report = await service.schedule_status(plan, current_user, latitude=lat, longitude=lng, mode=mode)
    return status_read(report)
