"""Server request pipeline.

Each request walks the stages

    unauthenticated -> role_checked -> url_validated -> body_validated
    -> handler_executed -> response_validated -> sent

and any stage may short-circuit into an error envelope. Later stages never
run after a short-circuit, so validation and authorization failures never
reach the business handler.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from queryportal.common.errors import AuthenticationError, PermissionDeniedError
from queryportal.contract.endpoint import Endpoint
from queryportal.contract.validation import ValidationResult, sequence_field_names
from queryportal.domain.models import HandlerResult
from queryportal.server.identity import ANONYMOUS, Identity, IdentityProvider, bearer_token
from queryportal.server.responses import (
    PipelineResponse,
    PipelineStage,
    create_error_response,
    create_success_response,
)

logger = logging.getLogger(__name__)

HandlerFn = Callable[..., Union[HandlerResult, Awaitable[HandlerResult]]]
HookFn = Callable[..., Union[Optional[HandlerResult], Awaitable[Optional[HandlerResult]]]]


@dataclass(frozen=True)
class IncomingRequest:
    method: str
    path_params: Mapping[str, Any] = field(default_factory=dict)
    query_params: Mapping[str, Any] = field(default_factory=dict)
    body: Optional[bytes] = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def token(self) -> Optional[str]:
        return bearer_token(self.headers)


@dataclass(frozen=True)
class AfterSuccessHook:
    """Runs after the response is validated, e.g. to send a confirmation email.

    Called with ``identity, request_data, url_variables, response_data``.
    """

    fn: HookFn
    ignore_errors: bool = False


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _query_payload(params: Mapping[str, Any], shape: Any) -> Optional[dict[str, Any]]:
    """Fold repeated query keys back into the request shape.

    List fields of a model shape keep every value, other fields take the
    first one. Without a model to consult, a key seen once is a scalar.
    """
    if not params:
        return None
    list_fields = sequence_field_names(shape)
    out: dict[str, Any] = {}
    for key, value in params.items():
        values = list(value) if isinstance(value, (list, tuple)) else [value]
        if list_fields is not None:
            out[key] = values if key in list_fields else (values[0] if values else None)
        else:
            out[key] = values[0] if len(values) == 1 else values
    return out


class ApiHandler:
    """Binds one contract to one business handler.

    The handler is called as ``handler(data=..., url_variables=...,
    identity=...)`` and returns a :class:`HandlerResult`. Exceptions raised
    by the handler are converted into 500 envelopes.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        handler: HandlerFn,
        identity_provider: IdentityProvider,
        after_success: Sequence[AfterSuccessHook] = (),
    ):
        self.endpoint = endpoint
        self.handler = handler
        self.identity_provider = identity_provider
        self.after_success = tuple(after_success)

    def _fail(self, message: str, status_code: int, stage: PipelineStage) -> PipelineResponse:
        log = logger.warning if status_code >= 500 else logger.info
        log(
            "request rejected",
            extra={
                "endpoint": self.endpoint.label,
                "stage": stage.value,
                "status_code": status_code,
            },
        )
        return create_error_response(self.endpoint, message, status_code, stage)

    # ----------------------------
    # stages
    # ----------------------------

    def _authenticate(self, request: IncomingRequest) -> Union[Identity, PipelineResponse]:
        stage = PipelineStage.UNAUTHENTICATED
        try:
            identity = self.identity_provider.resolve(request.token)
        except AuthenticationError as exc:
            logger.info("credential rejected: %s", exc, extra={"endpoint": self.endpoint.label})
            identity = None
            if self.endpoint.requires_authentication():
                return self._fail("Not authenticated", 401, stage)
        except PermissionDeniedError as exc:
            if self.endpoint.requires_authentication():
                return self._fail("Not authorized", 403, stage)
            logger.info("credential refused on public route: %s", exc, extra={"endpoint": self.endpoint.label})
            identity = None

        if not self.endpoint.requires_authentication():
            return identity or ANONYMOUS
        if identity is None:
            return self._fail("Not authenticated", 401, stage)
        if not self.endpoint.is_role_allowed(identity.roles):
            return self._fail("Not authorized", 403, stage)
        return identity

    def _read_body(self, request: IncomingRequest) -> ValidationResult[Any]:
        if self.endpoint.is_read:
            return self.endpoint.validate_request(
                _query_payload(request.query_params, self.endpoint.request_schema)
            )

        raw: Any = None
        if request.body:
            try:
                raw = json.loads(request.body)
            except ValueError:
                return ValidationResult(success=False, message="invalid JSON body")
        return self.endpoint.validate_request(raw)

    async def _execute(self, data: Any, url_variables: Any, identity: Identity) -> HandlerResult:
        try:
            result = await _maybe_await(
                self.handler(data=data, url_variables=url_variables, identity=identity)
            )
        except Exception as exc:  # handlers must never crash the process
            logger.exception("handler raised", extra={"endpoint": self.endpoint.label})
            return HandlerResult.fail(str(exc) or exc.__class__.__name__, 500)

        if not isinstance(result, HandlerResult):
            logger.error(
                "handler returned %s instead of HandlerResult",
                type(result).__name__,
                extra={"endpoint": self.endpoint.label},
            )
            return HandlerResult.fail("Handler returned an invalid result", 500)
        return result

    async def _run_hooks(
        self,
        identity: Identity,
        data: Any,
        url_variables: Any,
        response_data: Any,
    ) -> Optional[PipelineResponse]:
        for hook in self.after_success:
            try:
                outcome = await _maybe_await(
                    hook.fn(identity, data, url_variables, response_data)
                )
            except Exception as exc:
                if hook.ignore_errors:
                    logger.warning("after-success hook failed: %s", exc, extra={"endpoint": self.endpoint.label})
                    continue
                logger.exception("after-success hook raised", extra={"endpoint": self.endpoint.label})
                return self._fail(str(exc) or "Unknown error", 500, PipelineStage.RESPONSE_VALIDATED)

            if isinstance(outcome, HandlerResult) and not outcome.success and not hook.ignore_errors:
                return self._fail(
                    outcome.message or "Unknown error",
                    outcome.error_code or 500,
                    PipelineStage.RESPONSE_VALIDATED,
                )
        return None

    # ----------------------------
    # entry point
    # ----------------------------

    async def handle(self, request: IncomingRequest) -> PipelineResponse:
        identity = self._authenticate(request)
        if isinstance(identity, PipelineResponse):
            return identity

        url = self.endpoint.validate_url_params(dict(request.path_params) or None)
        if not url.success:
            return self._fail(
                f"URL parameter validation error: {url.message}", 400, PipelineStage.ROLE_CHECKED
            )

        body = self._read_body(request)
        if not body.success:
            return self._fail(f"Validation error: {body.message}", 400, PipelineStage.URL_VALIDATED)

        result = await self._execute(body.data, url.data, identity)
        if not result.success:
            return self._fail(
                result.message or "Unknown error",
                result.error_code or 500,
                PipelineStage.HANDLER_EXECUTED,
            )

        checked = self.endpoint.validate_response(result.data)
        if not checked.success:
            return self._fail(
                f"Response validation error: {checked.message}", 400, PipelineStage.HANDLER_EXECUTED
            )

        hook_failure = await self._run_hooks(identity, body.data, url.data, checked.data)
        if hook_failure is not None:
            return hook_failure

        return create_success_response(self.endpoint, checked.data)

    __call__ = handle
