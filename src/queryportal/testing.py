"""In-process endpoint testing.

Runs a contract and its handler through the full request pipeline without
an HTTP server, with a fixed identity standing in for the caller.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from queryportal.contract.endpoint import Endpoint
from queryportal.server.identity import Identity, StaticIdentityProvider
from queryportal.server.pipeline import ApiHandler, HandlerFn, IncomingRequest
from queryportal.server.responses import PipelineResponse

_TEST_TOKEN = "endpoint-tester-token"


@dataclass(frozen=True)
class ExampleOutcome:
    name: str
    response: PipelineResponse
    response_valid: bool


def _plain(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    return value


class EndpointTester:
    def __init__(self, endpoint: Endpoint, handler: HandlerFn, identity: Optional[Identity] = None):
        self.endpoint = endpoint
        self.handler = handler
        self.identity = identity

    def _request(self, data: Any, url_params: Any, identity: Optional[Identity]) -> IncomingRequest:
        headers = {"Authorization": f"Bearer {_TEST_TOKEN}"} if identity is not None else {}
        path_params = dict(_plain(url_params) or {})

        if self.endpoint.is_read:
            query = dict(_plain(data) or {})
            return IncomingRequest(
                method=self.endpoint.method,
                path_params=path_params,
                query_params=query,
                headers=headers,
            )

        body = None if data is None else json.dumps(_plain(data)).encode("utf-8")
        return IncomingRequest(
            method=self.endpoint.method,
            path_params=path_params,
            body=body,
            headers=headers,
        )

    async def execute_with(
        self,
        data: Any = None,
        url_params: Any = None,
        identity: Optional[Identity] = None,
    ) -> PipelineResponse:
        identity = identity or self.identity
        provider = StaticIdentityProvider({_TEST_TOKEN: identity} if identity is not None else {})
        api_handler = ApiHandler(self.endpoint, self.handler, provider)
        return await api_handler.handle(self._request(data, url_params, identity))

    def _default_url_example(self) -> Any:
        examples: Mapping[str, Any] = self.endpoint.examples.url_variables or {}
        if "default" in examples:
            return examples["default"]
        return next(iter(examples.values()), None)

    async def run_examples(self) -> list[ExampleOutcome]:
        """Run every example payload; response validity is checked on success."""

        url_params = self._default_url_example()
        outcomes: list[ExampleOutcome] = []
        for name, payload in (self.endpoint.examples.payloads or {}).items():
            response = await self.execute_with(payload, url_params)
            valid = True
            if response.success:
                data = response.envelope.data
                valid = self.endpoint.validate_response(data).success
            outcomes.append(ExampleOutcome(name=name, response=response, response_valid=valid))
        return outcomes

