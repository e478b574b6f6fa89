"""
Users API: preferences that shape plan creation and timelines
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dayplan.api.schemas import UserPreferences
from dayplan.core.security import get_current_user
from dayplan.db.crud import update_user_preferences
from dayplan.db.models import User
from dayplan.db.session import get_db_session

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/preferences", response_model=UserPreferences)
async def read_preferences(current_user: User = Depends(get_current_user)):
    """Home location, default timezone and travel mode"""
    return UserPreferences.model_validate(current_user.preferences or {})


@router.put("/me/preferences", response_model=UserPreferences)
async def replace_preferences(
    payload: UserPreferences,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        user = await update_user_preferences(session, current_user, payload.model_dump(exclude_none=True))
    except Exception as e:
        logger.error(f"Error updating preferences: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update preferences"
        )
    return UserPreferences.model_validate(user.preferences or {})
