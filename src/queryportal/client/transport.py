"""Client transport: performs a prepared contract request over HTTP."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, TypeVar, Union

import httpx

from queryportal.contract.endpoint import Endpoint, PreparedRequest
from queryportal.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]

NO_TOKEN_MESSAGE = "Authentication required but no token available"


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, data: T, status_code: int = 200) -> "ApiResult[T]":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, message: str, status_code: Optional[int] = None) -> "ApiResult[T]":
        return cls(success=False, message=message, status_code=status_code)


class Fetcher(Protocol):
    async def __call__(self, endpoint: Endpoint, request: PreparedRequest) -> ApiResult[Any]: ...


def _error_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict) and payload.get("success") is False:
        message = payload.get("message")
        if isinstance(message, str):
            return message
    return None


class HttpTransport:
    """httpx-backed :class:`Fetcher` speaking the envelope protocol."""

    def __init__(self, client: httpx.AsyncClient, token_provider: Optional[TokenProvider] = None):
        self.client = client
        self.token_provider = token_provider

    @classmethod
    def from_settings(
        cls, settings: Settings, token_provider: Optional[TokenProvider] = None
    ) -> "HttpTransport":
        client = httpx.AsyncClient(base_url=settings.backend_url, timeout=settings.request_timeout)
        return cls(client, token_provider)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _token(self) -> Optional[str]:
        if self.token_provider is None:
            return None
        token = self.token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def __call__(self, endpoint: Endpoint, request: PreparedRequest) -> ApiResult[Any]:
        headers = {"Content-Type": "application/json"}
        if endpoint.requires_authentication():
            token = await self._token()
            if not token:
                return ApiResult.fail(NO_TOKEN_MESSAGE, 401)
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=headers,
                json=request.body if not endpoint.is_read and request.body is not None else None,
            )
            try:
                payload = response.json()
            except ValueError:
                payload = None
        except httpx.HTTPError as exc:
            logger.warning("request failed", extra={"endpoint": endpoint.label, "error": str(exc)})
            return ApiResult.fail(f"API request failed: {exc}")

        if response.is_error:
            message = _error_message(payload) or f"API error: {response.status_code} {response.reason_phrase}"
            return ApiResult.fail(message, response.status_code)

        if not (isinstance(payload, dict) and payload.get("success") is True and "data" in payload):
            return ApiResult.fail(_error_message(payload) or "Unknown error", response.status_code)

        checked = endpoint.validate_response(payload["data"])
        if not checked.success:
            return ApiResult.fail(f"Response validation error: {checked.message}", response.status_code)
        return ApiResult.ok(checked.data, response.status_code)
