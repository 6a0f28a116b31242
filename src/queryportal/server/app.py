"""FastAPI binding: one route per contract."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from queryportal.contract.endpoint import Endpoint
from queryportal.domain.models import ErrorEnvelope
from queryportal.server.identity import IdentityProvider
from queryportal.server.pipeline import AfterSuccessHook, ApiHandler, HandlerFn, IncomingRequest
from queryportal.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    endpoint: Endpoint
    handler: HandlerFn
    after_success: Sequence[AfterSuccessHook] = field(default_factory=tuple)


async def incoming_request(request: Request) -> IncomingRequest:
    # every value is kept; the contract's shape decides scalar vs list
    query = {key: request.query_params.getlist(key) for key in request.query_params.keys()}
    body = await request.body()
    return IncomingRequest(
        method=request.method,
        path_params=dict(request.path_params),
        query_params=query,
        body=body or None,
        headers=dict(request.headers),
    )


def mount_endpoint(
    router: Union[APIRouter, FastAPI],
    endpoint: Endpoint,
    handler: HandlerFn,
    identity_provider: IdentityProvider,
    after_success: Sequence[AfterSuccessHook] = (),
) -> ApiHandler:
    api_handler = ApiHandler(endpoint, handler, identity_provider, after_success=after_success)

    async def route(request: Request) -> JSONResponse:
        result = await api_handler.handle(await incoming_request(request))
        return JSONResponse(status_code=result.status_code, content=result.to_json())

    router.add_api_route(
        endpoint.path_template,
        route,
        methods=[endpoint.method],
        name=endpoint.operation_id,
        summary=endpoint.description or None,
    )
    return api_handler


def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort boundary: anything escaping a pipeline becomes a 500 envelope."""

    logger.error(
        "unhandled exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"path": request.url.path, "method": request.method},
    )
    envelope = ErrorEnvelope(message="Internal server error", error_code=500)
    return JSONResponse(status_code=500, content=envelope.model_dump(by_alias=True))


def create_app(
    routes: Iterable[Route],
    identity_provider: IdentityProvider,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.api_handlers = {}

    for r in routes:
        handler = mount_endpoint(app, r.endpoint, r.handler, identity_provider, r.after_success)
        app.state.api_handlers[r.endpoint.identity] = handler

    app.add_exception_handler(Exception, unhandled_exception_handler)
    return app
