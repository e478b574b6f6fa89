from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from dayplan.api.schemas import EventUpdate, PlanCreate
from dayplan.core.nlp.parser import EmptyPlanError, ParsedEvent, ParserNotConfiguredError, PlanParseError
from dayplan.core.schedule import ScheduleStatus
from dayplan.core.timeutils import ensure_utc
from dayplan.db.crud import create_user
from dayplan.db.models import User
from dayplan.services.planner import PlanService, serialize_plan

from conftest import FERRY_BUILDING

DAY = date(2024, 6, 15)


@pytest.fixture
async def user(session):
    return await create_user(session, "carol", "carol@example.com", "hash",
                             preferences={"default_timezone": "Europe/London", "home_location": "Home"})


@pytest.fixture
def service(session, fake_parser, fake_places):
    return PlanService(session, parser=fake_parser, places=fake_places)


def parsed(activity, location, start, end=None):
    return ParsedEvent(activity=activity, location=location, startTime=start, endTime=end)


class TestTimezoneFallback:

    def test_request_timezone_wins(self, service):
        user = User(username="u", email="u@example.com", password_hash="x",
                    preferences={"default_timezone": "Europe/London"})
        assert service.fallback_timezone("Asia/Tokyo", user) == "Asia/Tokyo"

    def test_user_preference_then_default(self, service):
        user = User(username="u", email="u@example.com", password_hash="x",
                    preferences={"default_timezone": "Europe/London"})
        assert service.fallback_timezone(None, user) == "Europe/London"
        assert service.fallback_timezone(None, None) == "UTC"
        assert service.fallback_timezone("Bogus/Zone", None) == "UTC"


class TestNormalizeEvent:

    def test_place_timezone_is_used(self, service):
        event = service.normalize_event(parsed("Coffee", "Ferry Building", "9am"), FERRY_BUILDING, "UTC", DAY)
        assert event.timezone == "America/Los_Angeles"
        assert event.start_utc == datetime(2024, 6, 15, 16, 0, tzinfo=timezone.utc)
        assert event.end_utc - event.start_utc == timedelta(hours=1)
        assert event.place_id == "place-ferry"
        assert event.photo_reference == "photo-ferry"

    def test_fallback_timezone_without_place(self, service):
        event = service.normalize_event(parsed("Lunch", "Somewhere", "12:30pm", "2pm"), None, "Asia/Tokyo", DAY)
        assert event.timezone == "Asia/Tokyo"
        assert event.start_utc == datetime(2024, 6, 15, 3, 30, tzinfo=timezone.utc)
        assert event.end_utc == datetime(2024, 6, 15, 5, 0, tzinfo=timezone.utc)
        assert event.place_id is None

    def test_overnight_event(self, service):
        event = service.normalize_event(parsed("Party", "Club", "11pm", "2am"), None, "UTC", DAY)
        assert event.end_utc - event.start_utc == timedelta(hours=3)


class TestCreatePlan:

    async def test_events_are_ordered_and_bad_starts_dropped(self, service, user, fake_parser, fake_places):
        fake_parser.events = [
            {"activity": "Dinner", "location": "Ferry Building", "startTime": "7pm"},
            {"activity": "Mystery", "location": "Ferry Building", "startTime": "whenever"},
            {"activity": "Coffee", "location": "Ferry Building", "startTime": "9am", "endTime": "9:30am"},
        ]
        plan, warnings = await service.create_plan(user, PlanCreate(text="coffee, dinner", date=DAY))

        assert [e.title for e in plan.events] == ["Coffee", "Dinner"]
        assert [e.position for e in plan.events] == [0, 1]
        assert len(warnings) == 1 and "Mystery" in warnings[0]
        # one lookup per distinct location
        assert fake_places.lookups == ["Ferry Building"]
        assert plan.timezone == "Europe/London"

        read = serialize_plan(plan, warnings)
        assert read.events[0].display_time == "9:00 AM - 9:30 AM"
        assert read.event_count == 2

    async def test_failed_lookup_keeps_event(self, service, user, fake_parser):
        fake_parser.events = [{"activity": "Walk", "location": "Unknown Park", "startTime": "10am"}]
        plan, warnings = await service.create_plan(user, PlanCreate(text="walk", date=DAY, timezone="Asia/Tokyo"))
        event = plan.events[0]
        assert event.timezone == "Asia/Tokyo"
        assert event.place_id is None
        assert warnings == []

    async def test_without_places_client(self, session, fake_parser, user):
        fake_parser.events = [{"activity": "Walk", "location": "Ferry Building", "startTime": "10am"}]
        plan, _ = await PlanService(session, parser=fake_parser).create_plan(user, PlanCreate(text="walk", date=DAY))
        assert plan.events[0].latitude is None

    async def test_no_usable_events(self, service, user, fake_parser):
        fake_parser.events = [{"activity": "Nap", "location": "Home", "startTime": "eventually"}]
        with pytest.raises(HTTPException) as exc:
            await service.create_plan(user, PlanCreate(text="nap", date=DAY))
        assert exc.value.status_code == 422

    @pytest.mark.parametrize("error, code", [
        (PlanParseError("Failed to process plan with language model"), 502),
        (ParserNotConfiguredError("No key for the model"), 503),
        (EmptyPlanError("Nothing to plan"), 400),
    ])
    async def test_parser_errors_map_to_http(self, service, user, fake_parser, error, code):
        fake_parser.error = error
        with pytest.raises(HTTPException) as exc:
            await service.create_plan(user, PlanCreate(text="anything", date=DAY))
        assert exc.value.status_code == code


@pytest.fixture
async def plan(service, user, fake_parser):
    fake_parser.events = [
        {"activity": "Coffee", "location": "Ferry Building", "startTime": "9am"},
        {"activity": "Lunch", "location": "Ferry Building", "startTime": "noon"},
    ]
    plan, _ = await service.create_plan(user, PlanCreate(text="coffee, lunch", date=DAY))
    return plan


class TestEventsAndTracking:

    async def test_move_event_keeps_duration_and_reorders(self, service, plan):
        coffee = plan.events[0]
        updated = await service.update_event(plan, coffee.id, EventUpdate(start_time="1pm"))
        assert updated.end_utc - updated.start_utc == timedelta(hours=1)
        assert [e.title for e in sorted(plan.events, key=lambda e: e.position)] == ["Lunch", "Coffee"]

    async def test_move_keeps_elapsed_duration_when_clocks_fall_back(self, service, user, fake_parser):
        fake_parser.events = [{"activity": "Late show", "location": "Ferry Building", "startTime": "12:30am"}]
        night, _ = await service.create_plan(user, PlanCreate(text="late show", date=date(2024, 11, 3)))
        show = night.events[0]
        assert show.end_utc - show.start_utc == timedelta(hours=1)

        # 1:30am happens twice that night; the event keeps one hour of real time
        updated = await service.update_event(night, show.id, EventUpdate(start_time="1:30am"))
        assert ensure_utc(updated.start_utc) == datetime(2024, 11, 3, 8, 30, tzinfo=timezone.utc)
        assert ensure_utc(updated.end_utc) == datetime(2024, 11, 3, 9, 30, tzinfo=timezone.utc)

    async def test_bad_time_is_rejected(self, service, plan):
        with pytest.raises(HTTPException) as exc:
            await service.update_event(plan, plan.events[0].id, EventUpdate(end_time="soon"))
        assert exc.value.status_code == 422

    async def test_timeline_legs(self, service, plan, user, fake_places):
        timeline = await service.build_timeline(plan, user)
        assert [leg.label for leg in timeline.legs] == ["From Home", "Next Stop"]
        assert timeline.legs[0].travel_time == "15 mins"
        assert any(call[0] == "Home" for call in fake_places.travel_calls)

    async def test_timeline_soft_failure(self, service, plan, fake_places):
        fake_places.fail_travel = True
        timeline = await service.build_timeline(plan, mode="walking")
        assert all(leg.travel_time == "Unable to calculate travel time" for leg in timeline.legs)
        assert timeline.legs[0].leave_by is None

    async def test_status_late_with_travel(self, service, plan, fake_places):
        # 8:50 in San Francisco, 30 minutes away from the 9:00 coffee
        now = datetime(2024, 6, 15, 15, 50, tzinfo=timezone.utc)
        fake_places.travel_seconds = 30 * 60
        report = await service.schedule_status(plan, latitude=37.7, longitude=-122.4, now=now)
        assert report.status == ScheduleStatus.RUNNING_LATE
        assert report.minutes_behind == 20

    async def test_status_requires_both_coordinates(self, service, plan):
        with pytest.raises(HTTPException) as exc:
            await service.schedule_status(plan, latitude=37.7)
        assert exc.value.status_code == 422
