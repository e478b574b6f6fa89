import time
from typing import Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dayplan.api.deps import performance_timer
from dayplan.api.schemas import Token, UserRead
from dayplan.core.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    authenticate_user,
    blacklist_token,
    create_access_token,
    create_refresh_token,
    get_current_user,
    get_current_user_from_refresh_token,
    get_password_hash,
    oauth2_scheme,
)
from dayplan.db.crud import create_user, get_user_by_email, get_user_by_username
from dayplan.db.models import User
from dayplan.db.session import get_db_session

# Set up logging
logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

MAX_FAILED_ATTEMPTS = 5
FAILED_ATTEMPT_WINDOW_SECONDS = 900

# Failed login tracking shared by all requests (use Redis in production)
_failed_attempts: Dict[str, Dict[str, float]] = {}


# Input validation models
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, description="Username")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Password")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")
        return v.strip().lower()

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.lower()

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one number")
        return v


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., description="Refresh token")


class AuthService:
    """Service class for handling authentication operations"""

    def __init__(self, session: AsyncSession, failed_attempts: Optional[Dict[str, Dict[str, float]]] = None):
        self.session = session
        self.failed_attempts = _failed_attempts if failed_attempts is None else failed_attempts

    async def authenticate_user_safe(self, username: str, password: str) -> Optional[User]:
        """Authenticate, refusing users with too many recent failures"""
        key = username.strip().lower()
        if self._is_rate_limited(key):
            logger.warning("login_rate_limited", username=key)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many failed login attempts. Please try again later."
            )

        user = await authenticate_user(username, password, self.session)
        if user:
            self.failed_attempts.pop(key, None)
            return user

        self._track_failed_attempt(key)
        return None

    def _track_failed_attempt(self, username: str):
        now = time.time()
        self._prune_stale_attempts(now)
        attempts = self.failed_attempts.setdefault(username, {"count": 0, "last_attempt": 0})
        if now - attempts["last_attempt"] > FAILED_ATTEMPT_WINDOW_SECONDS:
            attempts["count"] = 0
        attempts["count"] += 1
        attempts["last_attempt"] = now

    def _prune_stale_attempts(self, now: float):
        stale = [
            name for name, attempts in self.failed_attempts.items()
            if now - attempts["last_attempt"] > FAILED_ATTEMPT_WINDOW_SECONDS
        ]
        for name in stale:
            del self.failed_attempts[name]

    def _is_rate_limited(self, username: str) -> bool:
        attempts = self.failed_attempts.get(username)
        if not attempts:
            return False
        if time.time() - attempts["last_attempt"] > FAILED_ATTEMPT_WINDOW_SECONDS:
            attempts["count"] = 0
            return False
        return attempts["count"] >= MAX_FAILED_ATTEMPTS

    async def register_user(self, username: str, email: str, password: str) -> User:
        if await get_user_by_username(self.session, username):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already registered")
        if await get_user_by_email(self.session, email):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

        try:
            user = await create_user(self.session, username, email, get_password_hash(password))
        except IntegrityError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

        logger.info("user_registered", username=username, user_id=str(user.id))
        return user


def _issue_tokens(user: User) -> dict:
    return {
        "access_token": create_access_token({"sub": str(user.id), "username": user.username}),
        "refresh_token": create_refresh_token({"sub": str(user.id)}),
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    }


@router.post("/register",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "User registered successfully"},
        400: {"description": "Invalid input or user already exists"},
        500: {"description": "Registration failed"}
    },
    summary="User registration",
)
async def register(
    request: Request,
    user_data: RegisterRequest,
    session: AsyncSession = Depends(get_db_session),
):
    async with performance_timer("user_registration"):
        try:
            new_user = await AuthService(session).register_user(
                user_data.username, user_data.email, user_data.password
            )
            return UserRead.model_validate(new_user)
        except HTTPException as he:
            logger.warning("user_registration_rejected", status_code=he.status_code,
                           detail=he.detail, username=user_data.username)
            raise
        except Exception as e:
            logger.error("user_registration_error", error=str(e), error_type=type(e).__name__)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Registration failed"
            )


@router.post("/login",
    response_model=Token,
    responses={
        200: {"description": "Successfully authenticated"},
        401: {"description": "Invalid credentials"},
        429: {"description": "Too many failed attempts"},
    },
    summary="User login",
    description="Authenticate with username or email and return access and refresh tokens"
)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: AsyncSession = Depends(get_db_session),
):
    async with performance_timer("user_login"):
        user = await AuthService(session).authenticate_user_safe(form_data.username, form_data.password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect username or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")

        logger.info(
            "user_login_success",
            user_id=str(user.id),
            ip_address=request.client.host if request.client else None
        )
        return _issue_tokens(user)


@router.post("/refresh",
    response_model=Token,
    responses={401: {"description": "Invalid refresh token"}},
    summary="Refresh access token",
)
async def refresh_token(
    request: Request,
    refresh_data: RefreshTokenRequest,
    session: AsyncSession = Depends(get_db_session),
):
    async with performance_timer("token_refresh"):
        user = await get_current_user_from_refresh_token(refresh_data.refresh_token, session)
        # refresh tokens are single use
        blacklist_token(refresh_data.refresh_token)
        logger.info("token_refreshed", user_id=str(user.id))
        return _issue_tokens(user)


@router.post("/logout",
    responses={
        200: {"description": "Successfully logged out"},
        401: {"description": "Invalid token"}
    },
    summary="User logout",
    description="Invalidate the current access token"
)
async def logout(
    request: Request,
    token: str = Depends(oauth2_scheme),
    current_user: User = Depends(get_current_user),
):
    blacklist_token(token)
    logger.info("user_logout", user_id=str(current_user.id))
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserRead, summary="Current user")
async def read_me(current_user: User = Depends(get_current_user)):
    return UserRead.model_validate(current_user)
