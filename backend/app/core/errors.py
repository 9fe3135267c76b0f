############################################################
#
# mathchat - Math-focused Chat Service
#
# errors.py: Chat error taxonomy and HTTP status mapping
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Typed failures raised by the chat core.

Each error carries a human-readable message safe to show to users and,
optionally, internal detail that is only rendered in debug builds.
"""

from enum import Enum
from typing import Optional

from fastapi import status


class ChatError(Exception):
    """Base class for failures that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class InvalidRequestError(ChatError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedError(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(ChatError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ForbiddenError):
    """Missing conversation; surfaced as 403 so existence does not leak."""


class ProviderError(ChatError):
    """The hosted backend call failed. Terminal for the send."""


class PersistenceError(ChatError):
    """A reply was generated but could not be stored."""


class FailureKind(str, Enum):
    """How a local backend call failed."""
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    MALFORMED_RESPONSE = "malformed_response"
    NETWORK = "network"


class BackendUnavailableError(ChatError):
    """A local backend could not answer.

    Never reaches HTTP: the local adapters turn it into a degraded reply.
    """

    def __init__(self, kind: FailureKind, message: str, detail: Optional[str] = None):
        super().__init__(message, detail)
        self.kind = kind
