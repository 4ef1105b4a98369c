"""
Caller identity from the auth provider's bearer JWT.

The durable user id is the token's "sub" claim. It is NEVER accepted from
a request body.
"""

import logging
from typing import Optional

import jwt
from fastapi import Header, Request

from tryon_billing.config.settings import BillingSettings, get_settings
from tryon_billing.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> BillingSettings:
    """Settings bound to the app at startup, falling back to the environment."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def decode_user_id(token: str, settings: BillingSettings) -> str:
    """
    Verify a bearer token and return its subject.

    Raises:
        AuthenticationError: token missing, expired, invalid, or without subject
    """
    if not settings.jwt_secret:
        logger.error("SUPABASE_JWT_SECRET not configured; rejecting bearer token")
        raise AuthenticationError("Authentication not configured")

    options = {"require": ["sub", "exp"]}
    if not settings.jwt_audience:
        options["verify_aud"] = False
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token", extra={"error": str(e)})
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    return str(user_id)


def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> str:
    """FastAPI dependency returning the authenticated user id."""
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("No authorization header")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("No authorization header")
    return decode_user_id(token, get_app_settings(request))
