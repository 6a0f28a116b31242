from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

HTTP_METHODS: tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD")

# payload travels in the query string for these
READ_METHODS = frozenset({"GET", "HEAD"})

T = TypeVar("T")


class UserRole(str, Enum):
    PUBLIC = "PUBLIC"  # sentinel: bypasses authentication
    CUSTOMER = "CUSTOMER"
    COURIER = "COURIER"
    PARTNER_ADMIN = "PARTNER_ADMIN"
    PARTNER_EMPLOYEE = "PARTNER_EMPLOYEE"
    ADMIN = "ADMIN"


def role_value(role: Union[UserRole, str]) -> str:
    return role.value if isinstance(role, UserRole) else str(role)


class SuccessEnvelope(BaseModel):
    success: Literal[True] = True
    data: Any = None


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: Literal[False] = False
    message: str
    error_code: int = Field(default=500, alias="errorCode")


Envelope = Union[SuccessEnvelope, ErrorEnvelope]


@dataclass(frozen=True)
class HandlerResult(Generic[T]):
    """Discriminated result returned by business handlers."""

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[int] = None

    @classmethod
    def ok(cls, data: T) -> "HandlerResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, error_code: int = 500) -> "HandlerResult[T]":
        return cls(success=False, message=message, error_code=error_code)
