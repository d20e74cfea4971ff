"""Bearer-token authentication for the billing routes.

The identity service issues access tokens whose ``sub`` claim is the Finwise
user id. Billing only needs to know which active user is calling.
"""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from finwise.auth.jwt import decode_token
from finwise.config import Settings, get_settings
from finwise.database import get_db
from finwise.models.user import User
from finwise.services.subscription_service import get_user

# Missing Authorization header is rejected by HTTPBearer with 403
_bearer_scheme = HTTPBearer()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_id_from_token(token: str, settings: Settings) -> uuid.UUID:
    try:
        payload = decode_token(token, settings)
    except JWTError:
        raise _unauthorized() from None

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    try:
        return uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized() from None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """The active user named by the Bearer token.

    Raises:
        HTTPException 401: bad, expired or non-access token, or unknown user.
        HTTPException 403: the account is deactivated.
    """
    user = await get_user(db, _user_id_from_token(credentials.credentials, settings))
    if user is None:
        raise _unauthorized()
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")
    return user
