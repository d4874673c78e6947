"""
Bearer token helpers and the FastAPI auth dependencies built on them.

Signing keys and token lifetime come from the running app's `Settings`
(`request.app.state.settings`), so each app built by `create_app` uses its own.
"""
from datetime import datetime, timedelta
from typing import Optional
from bson import ObjectId
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from config import Settings
from models.user_model import User
from services.exceptions import AuthorizationError
import logging

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# auto_error is off so a missing header becomes our own 401 instead of a 403
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    data: dict, settings: Settings, expires_delta: Optional[timedelta] = None
) -> str:
    """Sign `data` as a JWT that expires after `expires_delta` (default from settings)."""
    lifetime = expires_delta or timedelta(hours=settings.access_token_expire_hours)
    claims = {**data, "exp": datetime.utcnow() + lifetime}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_user_token(user: User, settings: Settings) -> str:
    return create_access_token({"user_id": str(user.id), "role": user.role}, settings)


def verify_token(token: str, settings: Settings) -> Optional[dict]:
    """Decoded claims, or None when the token is malformed, tampered or expired."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected token: {e}")
        return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from_claims(claims: Optional[dict]) -> Optional[User]:
    user_id = (claims or {}).get("user_id")
    if not user_id or not ObjectId.is_valid(user_id):
        return None
    return User.objects(id=user_id).first()


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """
    Resolve the caller from the Authorization header.

    401 when the header is missing or the token does not map to a user,
    403 when the account has been deactivated.
    """
    if credentials is None:
        raise _unauthorized("No token, authorization denied")

    claims = verify_token(credentials.credentials, request.app.state.settings)
    user = _user_from_claims(claims)
    if user is None:
        raise _unauthorized("Token is not valid")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    return user


async def require_driver(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "driver":
        raise AuthorizationError("Driver access required")
    return current_user


async def require_passenger(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "passenger":
        raise AuthorizationError("Passenger access required")
    return current_user
