"""Exception taxonomy and error normalization."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """Base class for framework errors."""


class ContractError(PortalError):
    """A contract is defined or used incorrectly (programmer error)."""


class AuthenticationError(PortalError):
    """The caller has no valid credential."""

    status_code = 401


class PermissionDeniedError(PortalError):
    """The caller is known but lacks a permitted role."""

    status_code = 403


class ApiCallError(PortalError):
    """A client call through a contract failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class FormValidationError(PortalError):
    """A form submission was rejected by local validation."""

    def __init__(self, field_errors: Mapping[str, str]):
        self.field_errors = dict(field_errors)
        joined = ", ".join(f"{path}: {msg}" for path, msg in self.field_errors.items())
        super().__init__(f"Form validation error: {joined}")


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    code: int
    timestamp: float
    context: Optional[str] = None


def _error_code(error: BaseException) -> int:
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    return 500


def handle_error(
    error: BaseException,
    context: Optional[str] = None,
    log: bool = True,
) -> ErrorInfo:
    """Normalize any exception into an :class:`ErrorInfo` and log it."""

    message = str(error) or error.__class__.__name__
    info = ErrorInfo(
        message=message,
        code=_error_code(error),
        timestamp=time.time(),
        context=context,
    )
    if log:
        prefix = f"[{context}] " if context else ""
        logger.warning(
            "%sError: %s",
            prefix,
            message,
            extra={"error_code": info.code, "error_type": error.__class__.__name__},
        )
    return info
