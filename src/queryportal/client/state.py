from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

QueryStatus = Literal["idle", "loading", "error", "success"]
MutationStatus = Literal["idle", "pending", "error", "success"]


@dataclass
class QueryState:
    """Mutable cache entry for one canonical query key."""

    query_key: Any = None
    data: Any = None
    error: Optional[Exception] = None
    is_loading: bool = False          # no data yet
    is_fetching: bool = False         # a request is in flight
    is_error: bool = False
    is_success: bool = False
    is_cached_data: bool = False      # served without a fresh round trip
    invalidated: bool = False
    invalidations: int = 0            # bumped on every invalidation
    last_fetch_time: Optional[float] = None
    status_message: str = "Idle"

    @property
    def has_data(self) -> bool:
        return self.last_fetch_time is not None or self.data is not None

    @property
    def status(self) -> QueryStatus:
        if self.is_loading or (self.is_fetching and not self.has_data):
            return "loading"
        if self.is_error:
            return "error"
        if self.is_success:
            return "success"
        return "idle"

    def is_stale(self, now: float, stale_time: float) -> bool:
        if self.invalidated or self.last_fetch_time is None:
            return True
        return now - self.last_fetch_time >= stale_time

    def snapshot(self) -> "QueryState":
        return QueryState(**self.__dict__)


@dataclass
class MutationState:
    is_pending: bool = False
    is_error: bool = False
    error: Optional[Exception] = None
    is_success: bool = False
    data: Any = None

    @property
    def status(self) -> MutationStatus:
        if self.is_pending:
            return "pending"
        if self.is_error:
            return "error"
        if self.is_success:
            return "success"
        return "idle"

    def snapshot(self) -> "MutationState":
        return MutationState(**self.__dict__)


@dataclass
class FormState:
    form_error: Optional[Exception] = None
    is_submitting: bool = False
    query_params: Optional[dict[str, Any]] = field(default=None)
