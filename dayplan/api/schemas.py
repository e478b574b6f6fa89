from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from uuid import UUID
from datetime import date, datetime

from dayplan.core.settings import settings
from dayplan.core.schedule import ScheduleStatus
from dayplan.core.timeutils import is_valid_timezone
from dayplan.db.models import UserStatus
from dayplan.services.places import TRAVEL_MODES

SUSPICIOUS_PATTERNS = ['<script>', 'javascript:', 'data:text/html']


def _check_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not is_valid_timezone(v):
        raise ValueError(f"Unknown timezone: {v}")
    return v


def _check_mode(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in TRAVEL_MODES:
        raise ValueError(f"Travel mode must be one of: {', '.join(TRAVEL_MODES)}")
    return v


# ===== USER SCHEMAS =====

class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    username: str
    email: EmailStr
    status: UserStatus
    preferences: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    is_active: bool


class UserPreferences(BaseModel):
    home_location: Optional[str] = Field(None, max_length=500, description="Starting point of the day")
    default_timezone: Optional[str] = Field(None, description="IANA timezone used when a place has none")
    travel_mode: Optional[str] = Field(None, description="driving, transit, walking or bicycling")

    @field_validator('default_timezone')
    @classmethod
    def validate_timezone(cls, v):
        return _check_timezone(v)

    @field_validator('travel_mode')
    @classmethod
    def validate_mode(cls, v):
        return _check_mode(v)


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int


# ===== PLAN SCHEMAS =====

class PlanCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., description="Free-text plan for the day")
    plan_date: Optional[date] = Field(None, alias="date", description="Day the plan is for; defaults to today")
    timezone: Optional[str] = Field(None, description="Fallback IANA timezone for the plan")

    @field_validator('text')
    @classmethod
    def validate_text(cls, v):
        if not v or not v.strip():
            raise ValueError("Plan text cannot be empty")
        if len(v) > settings.MAX_PLAN_TEXT_LENGTH:
            raise ValueError(f"Plan text too long (max {settings.MAX_PLAN_TEXT_LENGTH} characters)")
        if any(pattern in v.lower() for pattern in SUSPICIOUS_PATTERNS):
            raise ValueError("Plan text contains invalid content")
        return v.strip()

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        return _check_timezone(v)


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    start_time: Optional[str] = Field(None, description="Time token such as '2pm' or '14:30'")
    end_time: Optional[str] = Field(None, description="Time token; earlier than start rolls to the next day")
    completed: Optional[bool] = None


class EventRead(BaseModel):
    id: UUID
    position: int
    title: str
    location: str
    place_id: Optional[str] = None
    photo_url: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timezone: str
    start_time: datetime = Field(..., description="UTC instant")
    end_time: datetime = Field(..., description="UTC instant")
    local_start: datetime
    local_end: datetime
    display_time: str = Field(..., description="e.g. '2:00 PM - 3:00 PM' in the event's timezone")
    completed: bool


class PlanSummary(BaseModel):
    id: UUID
    plan_date: date
    timezone: str
    event_count: int
    created_at: datetime


class PlanRead(PlanSummary):
    source_text: str
    events: List[EventRead]
    warnings: List[str] = []


class LegRead(BaseModel):
    label: str
    from_event_id: Optional[UUID] = None
    to_event_id: UUID
    mode: str
    travel_time: str
    duration_seconds: Optional[int] = None
    distance_meters: Optional[int] = None
    leave_by: Optional[datetime] = None
    buffer_minutes: Optional[int] = None


class TimelineRead(BaseModel):
    plan_id: UUID
    mode: str
    legs: List[LegRead]


class ScheduleStatusRead(BaseModel):
    status: ScheduleStatus
    message: str
    is_late: bool
    now: datetime
    current_event_id: Optional[UUID] = None
    next_event_id: Optional[UUID] = None
    minutes_behind: int
    minutes_until_next: Optional[int] = None
    travel_seconds: Optional[int] = None


# ===== PARSING & PLACES SCHEMAS =====

class ParsePlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_text: str = Field(..., alias="planText", min_length=1)
    plan_date: Optional[date] = Field(None, alias="date")

    @field_validator('plan_text')
    @classmethod
    def validate_plan_text(cls, v):
        if not v.strip():
            raise ValueError("Plan text is required")
        if len(v) > settings.MAX_PLAN_TEXT_LENGTH:
            raise ValueError(f"Plan text too long (max {settings.MAX_PLAN_TEXT_LENGTH} characters)")
        return v.strip()


class ParsedEventRead(BaseModel):
    activity: str
    location: str
    start_time: str
    end_time: Optional[str] = None


class ParsePlanResponse(BaseModel):
    events: List[ParsedEventRead]


class Coordinates(BaseModel):
    lat: float
    lng: float


class PlaceDetailsRequest(BaseModel):
    location: str = Field(..., description="Free-text place name")
    mode: str = Field("driving", description="Travel mode used with origin")
    origin: Optional[str] = Field(None, description="Where travel time is measured from")

    @field_validator('location')
    @classmethod
    def validate_location(cls, v):
        if not v or not v.strip():
            raise ValueError("Valid location is required")
        return v.strip()

    @field_validator('mode')
    @classmethod
    def validate_mode(cls, v):
        return _check_mode(v)


class PlaceDetailsResponse(BaseModel):
    place_id: str
    name: Optional[str] = None
    formatted_address: Optional[str] = None
    photo_url: str
    coordinates: Optional[Coordinates] = None
    timezone: Optional[str] = None
    travel_time: Optional[str] = None
    travel_seconds: Optional[int] = None
