"""Error taxonomy shared by the meetings domain and the BBB client.

Every error carries an HTTP-status-like ``code`` and a human readable
``msg``. The API layer renders them as ``{"code": ..., "msg": ...}``.
"""

from __future__ import annotations


class MeetingsError(Exception):
    """Base error with a status code and a user-facing message."""

    code: int = 500
    default_msg: str = "An unexpected error occurred"

    def __init__(self, msg: str | None = None, code: int | None = None) -> None:
        self.msg = msg or self.default_msg
        if code is not None:
            self.code = code
        super().__init__(self.msg)

    def to_dict(self) -> dict:
        return {"code": self.code, "msg": self.msg}


class ValidationError(MeetingsError):
    """Malformed, missing or out-of-range input."""

    code = 400
    default_msg = "Invalid request"


class AuthzError(MeetingsError):
    """Anonymous where login is required, or insufficient permission."""

    code = 401
    default_msg = "You are not authorized to perform this action"


class ForbiddenError(MeetingsError):
    code = 403
    default_msg = "Action forbidden"


class NotFoundError(MeetingsError):
    code = 404
    default_msg = "Not found"


class BusinessRuleError(MeetingsError):
    """A well-formed request that would break a membership or tenant rule."""

    code = 400
    default_msg = "The requested change is not allowed"


class UpstreamError(MeetingsError):
    """The conferencing server is unreachable or misbehaving."""

    code = 503
    default_msg = "Fatal error"


class ProxyError(UpstreamError):
    """Transport or XML parse failure on an outbound BBB call."""
