############################################################
#
# mathchat - Math-focused Chat Service
#
# auth.py: Bearer token authentication for chat endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API authentication.

Tokens are issued by the authentication service, which signs the user
id with the shared secret key. This module only verifies them.
"""

from typing import Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from backend.app.core.errors import UnauthorizedError
from backend.app.logging_config import bind_request_context, get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


def _get_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt=settings.token_salt)


def issue_token(user_id: int) -> str:
    """Sign a user id the same way the authentication service does."""
    return _get_serializer().dumps({"id": user_id})


def _user_id_from_payload(payload: Any) -> Optional[int]:
    if isinstance(payload, dict):
        payload = payload.get("id")
    if isinstance(payload, bool):
        return None
    try:
        return int(payload)
    except (TypeError, ValueError):
        return None


async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    """Resolve the caller's user id from ``Authorization: Bearer <token>``.

    Raises:
        UnauthorizedError: token missing, badly signed, expired or
            without a usable user id
    """
    if not credentials or not credentials.credentials:
        logger.warning("missing_token", path=request.url.path)
        raise UnauthorizedError("Unauthorized")

    settings = get_settings()
    try:
        payload = _get_serializer().loads(
            credentials.credentials, max_age=settings.token_max_age_seconds
        )
    except SignatureExpired:
        logger.warning("expired_token", path=request.url.path)
        raise UnauthorizedError("Token has expired")
    except BadSignature:
        logger.warning("invalid_token", path=request.url.path)
        raise UnauthorizedError("Unauthorized")

    user_id = _user_id_from_payload(payload)
    if user_id is None:
        logger.warning("invalid_token_payload", path=request.url.path)
        raise UnauthorizedError("Unauthorized")

    bind_request_context(user_id=user_id)
    return user_id
