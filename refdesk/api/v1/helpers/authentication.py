"""
Bearer JWT authentication.

Sessions are issued by the identity provider in front of the app; this
module only decodes the token and turns its ``sub`` claim into the acting
user's id.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import Request
from jose import JWTError, jwt

from refdesk.api.v1.helpers.responses import unauthorized_response
from refdesk.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30
TRIGGER_SECRET_HEADER = "X-Trigger-Secret"


class AuthenticatedActor:
    """The user a request acts on behalf of."""

    def __init__(self, actor_id: UUID, claims: dict | None = None):
        self.actor_id = actor_id
        self.claims = claims or {}

    def __repr__(self) -> str:
        return f"AuthenticatedActor({self.actor_id})"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> AuthenticatedActor:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        raise unauthorized_response("Invalid JWT")

    subject = payload.get("sub")
    if subject is None:
        raise unauthorized_response("No user id found in token")
    try:
        actor_id = UUID(str(subject))
    except ValueError:
        raise unauthorized_response("Invalid user id in token")
    return AuthenticatedActor(actor_id, claims=payload)


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


async def get_current_actor(request: Request) -> AuthenticatedActor:
    token = _bearer_token(request)
    if token is None:
        raise unauthorized_response("No authentication method found")
    return decode_access_token(token)


async def verify_trigger_secret(request: Request) -> None:
    """Guard for internal webhooks called by the database or scheduler."""
    provided = request.headers.get(TRIGGER_SECRET_HEADER) or ""
    if not settings.trigger_secret or not secrets.compare_digest(
        provided.encode("utf-8"), settings.trigger_secret.encode("utf-8")
    ):
        logger.warning("Rejected dispatch webhook call with a bad trigger secret")
        raise unauthorized_response("Invalid trigger secret")
