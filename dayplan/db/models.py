import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, DateTime, Index, JSON, Text
from sqlalchemy import Enum as SAEnum
from pydantic import computed_field
from uuid import UUID as PyUUID


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enums
class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


# Base model with common audit fields
class TimestampedModel(SQLModel):
    """Creation and update timestamps shared by all tables"""
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
    )


# Models
class User(TimestampedModel, table=True):
    __tablename__ = "users"

    __table_args__ = (
        Index('idx_users_status', 'status'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    username: str = Field(
        index=True,
        unique=True,
        nullable=False,
        max_length=50,
        description="Unique username for login"
    )
    email: str = Field(
        index=True,
        unique=True,
        nullable=False,
        max_length=255,
        description="User's email address"
    )
    password_hash: str = Field(
        nullable=False,
        max_length=255,
        description="Hashed password"
    )
    status: UserStatus = Field(
        default=UserStatus.ACTIVE,
        sa_column=Column(
            SAEnum(UserStatus, name="userstatus"),
            nullable=False,
            default=UserStatus.ACTIVE,
        ),
        description="User account status"
    )
    preferences: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="Home location, default timezone and travel mode"
    )

    @computed_field
    @property
    def is_active(self) -> bool:
        """Check if user account is active"""
        return self.status == UserStatus.ACTIVE


class DayPlan(TimestampedModel, table=True):
    """One day of events parsed from a single free-text plan"""
    __tablename__ = "day_plans"

    __table_args__ = (
        Index('idx_day_plans_user_date', 'user_id', 'plan_date'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: PyUUID = Field(foreign_key="users.id", nullable=False, index=True)
    plan_date: date = Field(nullable=False, description="Calendar day the events are anchored to")
    timezone: str = Field(
        max_length=64,
        nullable=False,
        description="Fallback timezone for events whose place has none"
    )
    source_text: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Plan text as submitted"
    )

    events: List["PlanEvent"] = Relationship(
        back_populates="plan",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "PlanEvent.start_utc",
            "lazy": "selectin",
        },
    )


class PlanEvent(TimestampedModel, table=True):
    __tablename__ = "plan_events"

    __table_args__ = (
        Index('idx_plan_events_plan_start', 'plan_id', 'start_utc'),
    )

    id: PyUUID = Field(default_factory=uuid.uuid4, primary_key=True)
    plan_id: PyUUID = Field(foreign_key="day_plans.id", nullable=False, index=True)
    position: int = Field(default=0, ge=0, description="Order within the day")
    title: str = Field(max_length=200, description="Short activity title")
    location: str = Field(max_length=500, description="Location as written in the plan")
    place_id: Optional[str] = Field(default=None, max_length=255)
    photo_reference: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Place photo token; the URL is signed at response time"
    )
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    timezone: str = Field(max_length=64, description="IANA timezone of the event location")
    start_utc: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    end_utc: datetime = Field(sa_type=DateTime(timezone=True), nullable=False)
    completed: bool = Field(default=False, nullable=False)

    plan: Optional[DayPlan] = Relationship(back_populates="events")
