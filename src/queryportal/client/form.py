"""Form bindings.

The contract's request shape is the only schema a form has: it validates
fields locally before anything is sent and validates the request again on
the way out.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, Optional

from queryportal.client.mutation import ApiMutation
from queryportal.client.query import ApiQuery
from queryportal.client.store import ApiStore, MutationOptions
from queryportal.common.errors import ApiCallError, FormValidationError
from queryportal.contract.endpoint import Endpoint, QueryOptions
from queryportal.contract.validation import ValidationResult, dump_data, validate_data

logger = logging.getLogger(__name__)


def _get_path(values: Mapping[str, Any], path: str) -> Any:
    node: Any = values
    for part in path.split("."):
        if isinstance(node, Mapping):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
    return node


def _set_path(values: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node: Any = values
    for part in parts[:-1]:
        if isinstance(node, list) and part.isdigit():
            node = node[int(part)]
            continue
        child = node.get(part)
        if not isinstance(child, (dict, list)):
            child = {}
            node[part] = child
        node = child
    last = parts[-1]
    if isinstance(node, list) and last.isdigit():
        node[int(last)] = value
    else:
        node[last] = value


class _FormValues:
    def __init__(self, endpoint: Endpoint, default_values: Optional[Mapping[str, Any]]):
        self.endpoint = endpoint
        self.default_values = copy.deepcopy(dict(default_values or {}))
        self.values: dict[str, Any] = copy.deepcopy(self.default_values)
        self.field_errors: dict[str, str] = {}

    def set_value(self, path: str, value: Any) -> None:
        _set_path(self.values, path, value)
        self.field_errors.pop(path, None)

    def get_value(self, path: str) -> Any:
        return _get_path(self.values, path)

    def get_values(self) -> dict[str, Any]:
        return copy.deepcopy(self.values)

    def validate(self) -> ValidationResult[Any]:
        result = validate_data(self.values, self.endpoint.request_schema)
        self.field_errors = result.field_messages()
        return result


class ApiForm(_FormValues):
    """A write form: local validation, then the mutation path."""

    def __init__(
        self,
        store: ApiStore,
        endpoint: Endpoint,
        default_values: Optional[Mapping[str, Any]] = None,
        mutation_options: Optional[MutationOptions] = None,
    ):
        super().__init__(endpoint, default_values)
        self.store = store
        self.mutation = ApiMutation(store, endpoint, mutation_options)

    async def submit_form(self, url_params: Any = None) -> Any:
        """Validate and submit; returns the response data, or None on failure.

        Field problems end up in ``field_errors`` and nothing is sent. A
        failure of the call itself becomes the root-level ``form_error``.
        """
        self.store.clear_form_error(self.endpoint)
        result = self.validate()
        if not result.success:
            logger.debug(
                "form rejected locally",
                extra={"endpoint": self.endpoint.label, "fields": sorted(self.field_errors)},
            )
            return None

        self.store.set_form_submitting(self.endpoint, True)
        try:
            return await self.mutation.mutate_async(result.data, url_params)
        except ApiCallError as exc:
            self.store.set_form_error(self.endpoint, exc)
            return None
        finally:
            self.store.set_form_submitting(self.endpoint, False)

    def validation_error(self) -> Optional[FormValidationError]:
        return FormValidationError(self.field_errors) if self.field_errors else None

    @property
    def is_submitting(self) -> bool:
        return self.store.get_form_state(self.endpoint).is_submitting

    @property
    def is_submit_successful(self) -> bool:
        return self.mutation.state.is_success

    @property
    def submit_error(self) -> Optional[Exception]:
        return self.mutation.state.error

    @property
    def form_error(self) -> Optional[Exception]:
        return self.store.get_form_state(self.endpoint).form_error

    @property
    def error_message(self) -> Optional[str]:
        error = self.form_error or self.submit_error
        return str(error) if error is not None else None

    def set_form_error(self, error: Optional[Exception]) -> None:
        self.store.set_form_error(self.endpoint, error)

    def clear_form_error(self) -> None:
        self.store.clear_form_error(self.endpoint)

    def reset(self) -> None:
        self.values = copy.deepcopy(self.default_values)
        self.field_errors = {}
        self.store.clear_form_error(self.endpoint)
        self.mutation.reset()


class ApiQueryForm(_FormValues):
    """A filter form whose validated values become a query's payload."""

    def __init__(
        self,
        store: ApiStore,
        endpoint: Endpoint,
        url_params: Any = None,
        default_values: Optional[Mapping[str, Any]] = None,
        query_options: Optional[QueryOptions] = None,
    ):
        super().__init__(endpoint, default_values)
        self.store = store
        self.url_params = url_params
        self.query_options = query_options
        self.query: Optional[ApiQuery] = None

    @property
    def query_params(self) -> Optional[dict[str, Any]]:
        return self.store.get_form_state(self.endpoint).query_params

    async def submit(self) -> Any:
        result = self.validate()
        if not result.success:
            return None
        params = dump_data(result.data, self.endpoint.request_schema)
        self.store.set_form_query_params(self.endpoint, params)
        self.query = ApiQuery(self.store, self.endpoint, params, self.url_params, self.query_options)
        return await self.query.fetch()

    def reset(self) -> None:
        self.values = copy.deepcopy(self.default_values)
        self.field_errors = {}
        self.store.set_form_query_params(self.endpoint, None)
        self.query = None
