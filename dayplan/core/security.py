import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dayplan.core.settings import settings
from dayplan.db.crud import get_user_by_id, get_user_by_login
from dayplan.db.models import User
from dayplan.db.session import get_db_session

# Set up logging
logger = logging.getLogger(__name__)

ALGORITHM = settings.JWT_ALGORITHM
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
REFRESH_TOKEN_EXPIRE_MINUTES = settings.REFRESH_TOKEN_EXPIRE_MINUTES

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

# In-memory token blacklist (use Redis in production)
token_blacklist = set()


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError) as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _create_token(data: dict, secret: str, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "iat": int(time.time()),
        "jti": uuid4().hex,
        "type": token_type,
    })
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    token = _create_token(
        data,
        settings.JWT_SECRET,
        "access",
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    logger.info("Access token created successfully", extra={'user_id': data.get('sub')})
    return token


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token"""
    return _create_token(
        data,
        settings.JWT_REFRESH_SECRET,
        "refresh",
        expires_delta or timedelta(minutes=REFRESH_TOKEN_EXPIRE_MINUTES),
    )


def blacklist_token(token: str) -> None:
    token_blacklist.add(token)
    logger.info("Token added to blacklist")


def is_token_blacklisted(token: str) -> bool:
    return token in token_blacklist


def decode_token(token: str, token_type: str = "access") -> Dict[str, Any]:
    """Decode and check a token; raises JWTError when it is invalid for ``token_type``"""
    secret = settings.JWT_SECRET if token_type == "access" else settings.JWT_REFRESH_SECRET
    payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    if not payload.get("sub") or payload.get("type") != token_type:
        raise JWTError("Invalid token payload")
    return payload


async def authenticate_user(
    username_or_email: str,
    password: str,
    session: AsyncSession
) -> Optional[User]:
    """Return the user when the credentials match, else None"""
    username_or_email = username_or_email.strip().lower()

    user = await get_user_by_login(session, username_or_email)
    if not user:
        logger.warning(f"Authentication failed: user not found - {username_or_email}")
        return None

    if not verify_password(password, user.password_hash):
        logger.warning(f"Authentication failed: invalid password for user - {username_or_email}")
        return None

    logger.info(f"User authenticated successfully: {user.username}")
    return user


async def _user_from_payload(payload: Dict[str, Any], session: AsyncSession) -> Optional[User]:
    try:
        user_id = UUID(payload["sub"])
    except (KeyError, ValueError):
        return None
    return await get_user_by_id(session, user_id)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Resolve the user behind a bearer access token"""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if is_token_blacklisted(token):
        logger.warning("Attempted to use blacklisted token")
        raise credentials_exc

    try:
        payload = decode_token(token, "access")
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise credentials_exc

    user = await _user_from_payload(payload, session)
    if not user or not user.is_active:
        logger.warning(f"User not found or inactive for token: {payload.get('sub')}")
        raise credentials_exc
    return user


async def get_current_user_from_refresh_token(token: str, session: AsyncSession) -> User:
    """Resolve the user behind a refresh token"""
    invalid = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid refresh token"
    )
    if is_token_blacklisted(token):
        raise invalid
    try:
        payload = decode_token(token, "refresh")
    except JWTError as e:
        logger.warning(f"Refresh token decode error: {e}")
        raise invalid

    user = await _user_from_payload(payload, session)
    if not user or not user.is_active:
        raise invalid
    return user
