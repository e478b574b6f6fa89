"""
Day plan orchestration: parse, enrich, normalize, persist, then track
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from fastapi import HTTPException
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from dayplan.api.schemas import (
    EventRead, EventUpdate, LegRead, PlaceDetailsResponse, PlanCreate,
    PlanRead, PlanSummary, ScheduleStatusRead, TimelineRead, Coordinates,
)
from dayplan.core.nlp.parser import (
    EmptyPlanError, ParsedEvent, ParserNotConfiguredError, PlanParseError, PlanParser,
)
from dayplan.core.schedule import (
    Leg, ScheduleReport, build_legs, buffer_minutes, evaluate_schedule,
    event_location, leave_by,
)
from dayplan.core.settings import Settings, settings as default_settings
from dayplan.core.timeutils import (
    TimeParseError, add_duration, build_event_window, calculate_end_time, ensure_utc,
    format_event_time, is_valid_timezone, local_to_utc, parse_time_string,
    resolve_timezone, utc_to_local,
)
from dayplan.db.crud import (
    create_day_plan, find_plan_event, get_user_day_plan, save_plan_event,
)
from dayplan.db.models import DayPlan, PlanEvent, User
from dayplan.services.places import (
    PlaceDetails, PlaceNotFoundError, PlacesClient, PlacesError,
    PlacesServiceError, TravelEstimate, build_photo_url,
)

logger = structlog.get_logger(__name__)


# ===== SERIALIZATION =====

def serialize_event(event: PlanEvent) -> EventRead:
    local_start = utc_to_local(event.start_utc, event.timezone)
    local_end = utc_to_local(event.end_utc, event.timezone)
    return EventRead(
        id=event.id,
        position=event.position,
        title=event.title,
        location=event.location,
        place_id=event.place_id,
        photo_url=build_photo_url(event.photo_reference),
        latitude=event.latitude,
        longitude=event.longitude,
        timezone=event.timezone,
        start_time=ensure_utc(event.start_utc),
        end_time=ensure_utc(event.end_utc),
        local_start=local_start,
        local_end=local_end,
        display_time=f"{format_event_time(local_start)} - {format_event_time(local_end)}",
        completed=event.completed,
    )


def summarize_plan(plan: DayPlan) -> PlanSummary:
    return PlanSummary(
        id=plan.id,
        plan_date=plan.plan_date,
        timezone=plan.timezone,
        event_count=len(plan.events),
        created_at=ensure_utc(plan.created_at),
    )


def serialize_plan(plan: DayPlan, warnings: Optional[List[str]] = None) -> PlanRead:
    events = sorted(plan.events, key=lambda e: ensure_utc(e.start_utc))
    return PlanRead(
        **summarize_plan(plan).model_dump(),
        source_text=plan.source_text,
        events=[serialize_event(e) for e in events],
        warnings=warnings or [],
    )


class PlanService:
    """Service class to handle day plan logic"""

    def __init__(
        self,
        session: AsyncSession,
        parser: Optional[PlanParser] = None,
        places: Optional[PlacesClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.parser = parser
        self.places = places
        self.settings = settings or default_settings

    # --- preferences -------------------------------------------------

    @staticmethod
    def _preferences(user: Optional[User]) -> Dict:
        return (user.preferences or {}) if user is not None else {}

    def fallback_timezone(self, requested: Optional[str], user: Optional[User] = None) -> str:
        """Request timezone, else the user's preferred one, else the configured default"""
        preferred = self._preferences(user).get("default_timezone")
        for candidate in (requested, preferred):
            if candidate and is_valid_timezone(candidate):
                return candidate
        return self.settings.DEFAULT_TIMEZONE

    def travel_mode(self, requested: Optional[str], user: Optional[User] = None) -> str:
        return requested or self._preferences(user).get("travel_mode") or self.settings.DEFAULT_TRAVEL_MODE

    def plan_day(self, requested: Optional[date], tz: str) -> date:
        if requested is not None:
            return requested
        return datetime.now(resolve_timezone(tz) or timezone.utc).date()

    # --- parsing & enrichment ------------------------------------------

    async def parse_plan(self, text: str, plan_date: Optional[date] = None) -> List[ParsedEvent]:
        """Parse plan text in a worker thread and map parser failures onto HTTP errors"""
        if self.parser is None:
            raise HTTPException(status_code=503, detail="Plan parser unavailable")
        try:
            events = await run_in_threadpool(self.parser.parse, text, plan_date)
            logger.info("plan_parsed", event_count=len(events))
            return events
        except EmptyPlanError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ParserNotConfiguredError as e:
            logger.error("plan_parser_not_configured", error=str(e))
            raise HTTPException(status_code=503, detail="Plan parser is not configured")
        except PlanParseError as e:
            logger.error("plan_parse_failed", error=str(e))
            raise HTTPException(status_code=502, detail=str(e))

    def _soft_lookup(self, location: str) -> Optional[PlaceDetails]:
        try:
            return self.places.lookup(location)
        except (PlacesError, ValueError) as e:
            logger.warning("place_lookup_skipped", location=location, error=str(e))
            return None

    async def lookup_places(self, locations: Iterable[str]) -> Dict[str, Optional[PlaceDetails]]:
        """Resolve each distinct location once, concurrently; failures map to None"""
        distinct = list(dict.fromkeys(loc.strip() for loc in locations if loc and loc.strip()))
        if self.places is None:
            return {loc: None for loc in distinct}
        results = await asyncio.gather(*(run_in_threadpool(self._soft_lookup, loc) for loc in distinct))
        return dict(zip(distinct, results))

    def normalize_event(
        self,
        parsed: ParsedEvent,
        place: Optional[PlaceDetails],
        fallback_tz: str,
        plan_date: date,
    ) -> PlanEvent:
        """Build a persisted event; raises TimeParseError when the start is unusable"""
        tz = place.timezone if place and place.timezone and is_valid_timezone(place.timezone) else fallback_tz
        start_local, end_local = build_event_window(
            parsed.start_time,
            parsed.end_time,
            tz,
            today=plan_date,
            default_duration=timedelta(minutes=self.settings.DEFAULT_EVENT_MINUTES),
        )
        return PlanEvent(
            title=parsed.activity[:200],
            location=parsed.location[:500],
            place_id=place.place_id if place else None,
            photo_reference=place.photo_reference if place else None,
            latitude=place.latitude if place else None,
            longitude=place.longitude if place else None,
            timezone=tz,
            start_utc=local_to_utc(start_local, tz),
            end_utc=local_to_utc(end_local, tz),
        )

    async def create_plan(self, user: User, payload: PlanCreate) -> Tuple[DayPlan, List[str]]:
        fallback_tz = self.fallback_timezone(payload.timezone, user)
        plan_date = self.plan_day(payload.plan_date, fallback_tz)

        parsed = await self.parse_plan(payload.text, plan_date)
        places = await self.lookup_places(p.location for p in parsed)

        events: List[PlanEvent] = []
        warnings: List[str] = []
        for item in parsed:
            try:
                events.append(self.normalize_event(item, places.get(item.location.strip()), fallback_tz, plan_date))
            except TimeParseError as e:
                logger.warning("event_dropped", activity=item.activity, start_time=item.start_time, error=str(e))
                warnings.append(f"Skipped '{item.activity}': {e}")

        if not events:
            raise HTTPException(status_code=422, detail="No events could be scheduled from this plan")

        plan = await create_day_plan(
            self.session,
            user_id=user.id,
            plan_date=plan_date,
            timezone=fallback_tz,
            source_text=payload.text,
            events=events,
        )
        logger.info("plan_created", plan_id=str(plan.id), event_count=len(events), dropped=len(warnings))
        return plan, warnings

    # --- reads & edits -------------------------------------------------

    async def get_plan(self, plan_id: UUID, user: User) -> DayPlan:
        plan = await get_user_day_plan(self.session, plan_id, user.id)
        if plan is None:
            raise HTTPException(status_code=404, detail="Plan not found")
        return plan

    async def update_event(self, plan: DayPlan, event_id: UUID, payload: EventUpdate) -> PlanEvent:
        event = find_plan_event(plan, event_id)
        if event is None:
            raise HTTPException(status_code=404, detail="Event not found")

        if payload.title is not None:
            event.title = payload.title.strip()
        if payload.completed is not None:
            event.completed = payload.completed

        if payload.start_time is not None or payload.end_time is not None:
            tz = event.timezone
            local_start = utc_to_local(event.start_utc, tz)
            duration = ensure_utc(event.end_utc) - ensure_utc(event.start_utc)
            try:
                new_start = (
                    parse_time_string(payload.start_time, tz, today=local_start.date())
                    if payload.start_time is not None else local_start
                )
                if payload.end_time is not None:
                    # validate before the soft end-time calculation
                    parse_time_string(payload.end_time, tz, today=new_start.date())
                    new_end = calculate_end_time(new_start, payload.end_time, tz)
                else:
                    new_end = add_duration(new_start, duration)
            except TimeParseError as e:
                raise HTTPException(status_code=422, detail=str(e))
            event.start_utc = local_to_utc(new_start, tz)
            event.end_utc = local_to_utc(new_end, tz)

        return await save_plan_event(self.session, plan, event)

    # --- timeline & status ---------------------------------------------

    async def estimate_travel(
        self,
        origin,
        destination,
        mode: str,
        departure_time: Optional[datetime] = None,
    ) -> TravelEstimate:
        """Travel time that never fails; unknown routes give an unavailable estimate"""
        if self.places is None or origin is None:
            return TravelEstimate(mode=mode)
        try:
            return await run_in_threadpool(self.places.travel_time, origin, destination, mode, departure_time)
        except PlacesError as e:
            logger.warning("travel_time_unavailable", mode=mode, error=str(e))
            return TravelEstimate(mode=mode)

    def _leg_read(self, leg: Leg, estimate: TravelEstimate) -> LegRead:
        next_start = leg.to_event.start_utc
        prev_end = leg.from_event.end_utc if leg.from_event is not None else None
        return LegRead(
            label=leg.label,
            from_event_id=leg.from_event.id if leg.from_event is not None else None,
            to_event_id=leg.to_event.id,
            mode=estimate.mode,
            travel_time=estimate.duration_text,
            duration_seconds=estimate.duration_seconds,
            distance_meters=estimate.distance_meters,
            leave_by=leave_by(next_start, estimate.duration_seconds),
            buffer_minutes=buffer_minutes(prev_end, next_start, estimate.duration_seconds),
        )

    async def build_timeline(
        self,
        plan: DayPlan,
        user: Optional[User] = None,
        mode: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> TimelineRead:
        mode = self.travel_mode(mode, user)
        home = origin or self._preferences(user).get("home_location")
        legs = build_legs(plan.events, home=home)

        estimates = await asyncio.gather(*(
            self.estimate_travel(
                leg.origin,
                leg.destination,
                mode,
                ensure_utc(leg.from_event.end_utc) if leg.from_event is not None else None,
            )
            for leg in legs
        ))
        return TimelineRead(
            plan_id=plan.id,
            mode=mode,
            legs=[self._leg_read(leg, est) for leg, est in zip(legs, estimates)],
        )

    async def schedule_status(
        self,
        plan: DayPlan,
        user: Optional[User] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        mode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ScheduleReport:
        if (latitude is None) != (longitude is None):
            raise HTTPException(status_code=422, detail="Both lat and lng are required for a position")

        now = ensure_utc(now or datetime.now(timezone.utc))
        grace = self.settings.SCHEDULE_GRACE_MINUTES
        report = evaluate_schedule(plan.events, now, grace_minutes=grace)

        if report.next_event_id is not None and latitude is not None:
            upcoming = find_plan_event(plan, report.next_event_id)
            estimate = await self.estimate_travel(
                (latitude, longitude),
                event_location(upcoming),
                self.travel_mode(mode, user),
            )
            if estimate.available:
                report = evaluate_schedule(
                    plan.events, now, travel_seconds=estimate.duration_seconds, grace_minutes=grace
                )

        logger.info("schedule_evaluated", plan_id=str(plan.id), status=report.status.value,
                    minutes_behind=report.minutes_behind)
        return report

    # --- places ----------------------------------------------------------

    async def place_details(self, location: str, mode: str = "driving", origin: Optional[str] = None) -> PlaceDetailsResponse:
        if self.places is None:
            raise HTTPException(status_code=503, detail="Places service is not configured")
        try:
            place = await run_in_threadpool(self.places.lookup, location)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PlaceNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PlacesServiceError as e:
            raise HTTPException(status_code=502, detail=str(e))

        response = PlaceDetailsResponse(
            place_id=place.place_id,
            name=place.name,
            formatted_address=place.formatted_address,
            photo_url=place.photo_url,
            coordinates=Coordinates(lat=place.latitude, lng=place.longitude) if place.coordinates else None,
            timezone=place.timezone,
        )
        if origin:
            estimate = await self.estimate_travel(origin, place.coordinates or location, mode)
            response.travel_time = estimate.duration_text
            response.travel_seconds = estimate.duration_seconds
        return response


def status_read(report: ScheduleReport) -> ScheduleStatusRead:
    return ScheduleStatusRead(
        status=report.status,
        message=report.message,
        is_late=report.is_late,
        now=report.now,
        current_event_id=report.current_event_id,
        next_event_id=report.next_event_id,
        minutes_behind=report.minutes_behind,
        minutes_until_next=report.minutes_until_next,
        travel_seconds=report.travel_seconds,
    )
