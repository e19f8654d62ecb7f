"""Fail-fast input validation.

``Validator`` records checks in order and ``raise_first()`` raises the
first failing one, so the caller sees a single ValidationError (or
AuthzError for login checks) before any side effect happens.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from src.bbb_meetings.core.errors import AuthzError, MeetingsError, ValidationError

SHORT_STRING_MAX = 1000
MEDIUM_STRING_MAX = 10000
LONG_STRING_MAX = 100000

_RESOURCE_ID_RE = re.compile(r"^[a-z]:[^:]+:.+$")
_PRINCIPAL_ID_RE = re.compile(r"^[ug]:[^:]+:.+$")
_GROUP_ID_RE = re.compile(r"^g:[^:]+:.+$")


def is_resource_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_RESOURCE_ID_RE.match(value))


def is_principal_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_PRINCIPAL_ID_RE.match(value))


def is_group_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_GROUP_ID_RE.match(value))


def is_not_empty(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def max_length(value: Any, length: int) -> bool:
    return not isinstance(value, str) or len(value) <= length


def is_timestamp(value: Any) -> bool:
    return str(value).isdigit()


class Validator:
    """Ordered collection of checks where only the first failure counts."""

    def __init__(self) -> None:
        self._errors: list[MeetingsError] = []

    def check(self, passed: bool, msg: str, code: int = 400) -> Validator:
        if not passed:
            self._errors.append(ValidationError(msg, code=code))
        return self

    def logged_in(self, ctx: Any, msg: str) -> Validator:
        if ctx.user is None:
            self._errors.append(AuthzError(msg))
        return self

    def is_in(self, value: Any, allowed: Iterable[Any], msg: str) -> Validator:
        return self.check(value in list(allowed), msg)

    def has_errors(self) -> bool:
        return bool(self._errors)

    def raise_first(self) -> None:
        if self._errors:
            raise self._errors[0]
