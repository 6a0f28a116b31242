from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from queryportal.client.state import MutationState
from queryportal.client.store import ApiStore, MutationOptions
from queryportal.common.errors import ApiCallError
from queryportal.contract.endpoint import Endpoint

logger = logging.getLogger(__name__)


class ApiMutation:
    def __init__(
        self,
        store: ApiStore,
        endpoint: Endpoint,
        options: Optional[MutationOptions] = None,
    ):
        self.store = store
        self.endpoint = endpoint
        self.options = options

    @property
    def state(self) -> MutationState:
        return self.store.get_mutation_state(self.endpoint) or MutationState()

    async def mutate_async(self, payload: Any = None, url_params: Any = None) -> Any:
        return await self.store.execute_mutation(self.endpoint, payload, url_params, self.options)

    async def _mutate(self, payload: Any, url_params: Any) -> Any:
        try:
            return await self.mutate_async(payload, url_params)
        except ApiCallError as exc:
            # already recorded in the mutation state
            logger.debug("mutation failed: %s", exc, extra={"endpoint": self.endpoint.label})
            return None

    def mutate(self, payload: Any = None, url_params: Any = None) -> "asyncio.Task[Any]":
        """Start the mutation without waiting; failures only show in ``state``."""

        return asyncio.get_running_loop().create_task(self._mutate(payload, url_params))

    def reset(self) -> None:
        self.store.reset_mutation(self.endpoint)
