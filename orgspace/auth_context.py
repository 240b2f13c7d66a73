"""
orgspace/auth_context.py

Identity source for the request pipeline.

Resolves the acting identity from an optional bearer JWT. A missing,
expired or invalid token is not an error here: the request simply
continues as anonymous and the core operation decides whether that is
acceptable.
"""

from __future__ import annotations

import time
from typing import Optional

import jwt

from orgspace.config import ALGORITHM, IS_DEV, SECRET_KEY
from orgspace.context import Identity, RequestContext
from orgspace.errors import AuthenticationError
from orgspace.logger import get_logger
from orgspace.models import User

logger = get_logger(__name__)

ACCESS_TOKEN_SECONDS = 3600


# ---------------------------------------------------------
# JWT Token Helpers
# ---------------------------------------------------------
def create_access_token(user: User, expires_in: int = ACCESS_TOKEN_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": user.id,
        "username": user.username,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify a JWT access token and return the decoded payload.

    Raises:
        AuthenticationError: If the token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def bearer_token(ctx: RequestContext) -> Optional[str]:
    header = ctx.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# ---------------------------------------------------------
# Identity Resolver
# ---------------------------------------------------------
def resolve_identity(ctx: RequestContext) -> Optional[Identity]:
    """
    Pipeline identity resolver.

    Returns:
        Identity from the token's sub/username claims, or None (anonymous)
        when there is no usable token.
    """
    token = bearer_token(ctx)
    if token is None:
        return None

    try:
        payload = verify_token(token)
    except AuthenticationError as e:
        if IS_DEV:
            logger.debug("Bearer token rejected; continuing as anonymous", reason=e.message)
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Token payload missing sub; continuing as anonymous")
        return None
    return Identity(id=str(user_id), username=payload.get("username"))
