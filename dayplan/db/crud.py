"""
CRUD operations for users, day plans and plan events
"""

import logging
from datetime import date
from typing import List, Optional, Dict, Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dayplan.core.timeutils import ensure_utc
from dayplan.db.models import User, DayPlan, PlanEvent

logger = logging.getLogger(__name__)

# ===== USER CRUD OPERATIONS =====

async def create_user(
    session: AsyncSession,
    username: str,
    email: str,
    password_hash: str,
    preferences: Optional[Dict[str, Any]] = None,
) -> User:
    """Create a new user"""
    try:
        user = User(
            username=username,
            email=email,
            password_hash=password_hash,
            preferences=preferences or {},
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info(f"Created user: {username}")
        return user
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating user: {e}")
        raise

async def get_user_by_id(session: AsyncSession, user_id: UUID) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()

async def get_user_by_username(session: AsyncSession, username: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()

async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()

async def get_user_by_login(session: AsyncSession, username_or_email: str) -> Optional[User]:
    """Find a user by username or email"""
    result = await session.execute(
        select(User).where(
            (User.username == username_or_email) | (User.email == username_or_email)
        )
    )
    return result.scalar_one_or_none()

async def update_user_preferences(
    session: AsyncSession,
    user: User,
    preferences: Dict[str, Any],
) -> User:
    """Replace a user's preferences"""
    try:
        user.preferences = dict(preferences)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        logger.info(f"Updated preferences for user: {user.username}")
        return user
    except Exception as e:
        await session.rollback()
        logger.error(f"Error updating preferences for {user.username}: {e}")
        raise

# ===== DAY PLAN CRUD OPERATIONS =====

async def create_day_plan(
    session: AsyncSession,
    user_id: UUID,
    plan_date: date,
    timezone: str,
    source_text: str,
    events: List[PlanEvent],
) -> DayPlan:
    """Create a plan with its events in one commit"""
    try:
        plan = DayPlan(
            user_id=user_id,
            plan_date=plan_date,
            timezone=timezone,
            source_text=source_text,
        )
        ordered = sorted(events, key=lambda e: ensure_utc(e.start_utc))
        for position, event in enumerate(ordered):
            event.position = position
            event.plan_id = plan.id
        plan.events = ordered
        session.add(plan)
        await session.commit()
        await session.refresh(plan, attribute_names=["events"])
        logger.info(f"Created day plan {plan.id} with {len(events)} events")
        return plan
    except Exception as e:
        await session.rollback()
        logger.error(f"Error creating day plan: {e}")
        raise

async def get_user_day_plan(session: AsyncSession, plan_id: UUID, user_id: UUID) -> Optional[DayPlan]:
    """Get a plan only if it belongs to the user"""
    result = await session.execute(
        select(DayPlan).where(DayPlan.id == plan_id, DayPlan.user_id == user_id)
    )
    return result.scalar_one_or_none()

async def get_user_day_plans(
    session: AsyncSession,
    user_id: UUID,
    plan_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 50,
) -> List[DayPlan]:
    """List a user's plans, newest day first"""
    stmt = select(DayPlan).where(DayPlan.user_id == user_id)
    if plan_date is not None:
        stmt = stmt.where(DayPlan.plan_date == plan_date)
    stmt = stmt.order_by(DayPlan.plan_date.desc(), DayPlan.created_at.desc()).offset(skip).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())

async def delete_day_plan(session: AsyncSession, plan: DayPlan) -> None:
    try:
        await session.delete(plan)
        await session.commit()
        logger.info(f"Deleted day plan {plan.id}")
    except Exception as e:
        await session.rollback()
        logger.error(f"Error deleting day plan {plan.id}: {e}")
        raise

# ===== PLAN EVENT CRUD OPERATIONS =====

def find_plan_event(plan: DayPlan, event_id: UUID) -> Optional[PlanEvent]:
    return next((e for e in plan.events if e.id == event_id), None)

async def save_plan_event(session: AsyncSession, plan: DayPlan, event: PlanEvent) -> PlanEvent:
    """Persist an edited event and renumber the plan by start time"""
    try:
        for position, other in enumerate(sorted(plan.events, key=lambda e: ensure_utc(e.start_utc))):
            other.position = position
        session.add(event)
        await session.commit()
        await session.refresh(plan, attribute_names=["events"])
        logger.info(f"Updated event {event.id} in plan {plan.id}")
        return event
    except Exception as e:
        await session.rollback()
        logger.error(f"Error updating event {event.id}: {e}")
        raise
