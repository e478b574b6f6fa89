import os

# Configure before any dayplan import reads settings
os.environ["ENABLE_RATE_LIMITING"] = "false"
os.environ["LOG_FILE"] = ""
os.environ["DB_URL"] = "sqlite:///./unused.db"
os.environ["DB_CREATE_TABLES"] = "false"
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["GOOGLE_MAPS_API_KEY"] = ""
os.environ["DEFAULT_TIMEZONE"] = "UTC"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"

from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from dayplan.api import auth
from dayplan.api.deps import get_places_client, get_plan_parser
from dayplan.core.nlp.parser import EmptyPlanError, ParsedEvent
from dayplan.db.session import get_db_session
from dayplan.main import app
from dayplan.services.places import (
    PlaceDetails, PlaceNotFoundError, PlacesServiceError, TravelEstimate,
)

FERRY_BUILDING = PlaceDetails(
    place_id="place-ferry",
    latitude=37.7955,
    longitude=-122.3937,
    photo_reference="photo-ferry",
    timezone="America/Los_Angeles",
    name="Ferry Building",
    formatted_address="1 Ferry Building, San Francisco, CA",
)


class FakePlanParser:
    """Stands in for PlanParser; returns canned events or raises ``error``"""

    def __init__(self):
        self.events: List[dict] = []
        self.error: Optional[Exception] = None
        self.calls = []

    def parse(self, plan_text, plan_date=None):
        self.calls.append((plan_text, plan_date))
        if self.error is not None:
            raise self.error
        if not plan_text.strip():
            raise EmptyPlanError("Plan text is required")
        return [ParsedEvent.model_validate(e) for e in self.events]


class FakePlacesClient:
    """Stands in for PlacesClient with a fixed gazetteer"""

    def __init__(self):
        self.places: Dict[str, PlaceDetails] = {"Ferry Building": FERRY_BUILDING}
        self.lookups: List[str] = []
        self.travel_calls = []
        self.travel_seconds: Optional[int] = 900
        self.fail_travel = False

    def lookup(self, location):
        self.lookups.append(location)
        if location not in self.places:
            raise PlaceNotFoundError(f"Location not found: {location}")
        return self.places[location]

    def travel_time(self, origin, destination, mode="driving", departure_time=None):
        self.travel_calls.append((origin, destination, mode, departure_time))
        if self.fail_travel:
            raise PlacesServiceError("Failed to fetch travel time")
        if self.travel_seconds is None:
            return TravelEstimate(mode=mode)
        return TravelEstimate(
            mode=mode,
            duration_seconds=self.travel_seconds,
            duration_text=f"{self.travel_seconds // 60} mins",
            distance_meters=5000,
        )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_parser():
    return FakePlanParser()


@pytest.fixture
def fake_places():
    return FakePlacesClient()


@pytest.fixture
async def client(session_factory, fake_parser, fake_places):
    async def override_session():
        async with session_factory() as session:
            yield session

    auth._failed_attempts.clear()
    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_plan_parser] = lambda: fake_parser
    app.dependency_overrides[get_places_client] = lambda: fake_places

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def register_and_login(client, username="alice", password="Secret123"):
    resp = await client.post("/api/v1/auth/register", json={
        "username": username,
        "email": f"{username}@example.com",
        "password": password,
    })
    assert resp.status_code == 201, resp.text
    resp = await client.post("/api/v1/auth/login", data={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
async def auth_headers(client):
    return await register_and_login(client)
