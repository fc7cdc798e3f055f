"""
Auth utilities for the learnchat API.

Validates HS256 JWTs signed with AUTH_JWT_SECRET and extracts the user id
from the `sub` claim. Falls back to the X-User-Id header (internal callers,
tests) when AUTH_ALLOW_USER_HEADER is enabled.
"""
import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, Request

from learnchat.core.config import settings
from learnchat.core.errors import UnauthorizedError
from learnchat.features.users.service import get_account
from learnchat.models.account import Account

logger = logging.getLogger(__name__)


def verify_jwt(token: str) -> Optional[str]:
    """
    Verify a bearer token and return its subject.

    Returns None when no secret is configured (verification disabled).
    Raises UnauthorizedError for expired or invalid tokens.
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("AUTH_JWT_SECRET not configured, skipping JWT validation")
        return None
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("auth.invalid_token", extra={"error": str(e)})
        raise UnauthorizedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Token has no subject")
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Internal callers and tests"),
) -> str:
    """
    Priority:
    1. Bearer JWT from the Authorization header
    2. X-User-Id header
    3. UNAUTHORIZED
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_jwt(auth_header[7:])
        if user_id:
            return user_id

    if x_user_id and settings.AUTH_ALLOW_USER_HEADER:
        return x_user_id

    raise UnauthorizedError("Missing Authorization (Bearer JWT) or X-User-Id header")


async def get_current_account(user_id: str = Depends(get_current_user_id)) -> Account:
    account = get_account(user_id)
    if account is None:
        raise UnauthorizedError("Unknown account")
    return account
