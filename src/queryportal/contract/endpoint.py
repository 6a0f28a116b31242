"""Endpoint contracts: one immutable descriptor per API operation."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union
from urllib.parse import urlencode

from queryportal.common.errors import ContractError
from queryportal.contract.paths import (
    fill_template,
    operation_id,
    placeholders,
    split_path,
    to_template,
    with_api_prefix,
)
from queryportal.contract.validation import (
    ValidationResult,
    dump_data,
    model_field_names,
    validate_data,
)
from queryportal.domain.models import HTTP_METHODS, READ_METHODS, UserRole, role_value

DEFAULT_ERROR_CODES: Mapping[int, str] = {
    400: "Invalid request data",
    401: "Not authenticated",
    403: "Not authorized",
    500: "Internal server error",
}


@dataclass(frozen=True)
class QueryOptions:
    """Cache hints and per-call query options.

    ``None`` means "inherit": call options are layered over the contract's
    options, which are layered over the configured defaults.
    """

    stale_time: Optional[float] = None
    cache_time: Optional[float] = None
    refresh_delay: Optional[float] = None
    query_key: Any = None
    enabled: Optional[bool] = None
    disable_local_cache: Optional[bool] = None
    on_success: Optional[Callable[[Any], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None

    def merged(self, override: Optional["QueryOptions"]) -> "QueryOptions":
        if override is None:
            return self
        changes = {
            f.name: getattr(override, f.name)
            for f in dataclasses.fields(override)
            if getattr(override, f.name) is not None
        }
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class EndpointExamples:
    payloads: Optional[Mapping[str, Any]] = None
    url_variables: Optional[Mapping[str, Any]] = None
    responses: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    url: str
    body: Any = None            # JSON-compatible, None for read operations
    query: Mapping[str, Any] = field(default_factory=dict)


def _freeze(mapping: Optional[Mapping[Any, Any]]) -> Mapping[Any, Any]:
    return MappingProxyType(dict(mapping or {}))


def _query_string(values: Mapping[str, Any]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for key, value in values.items():
        if value is None:
            continue
        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            if isinstance(item, bool):
                item = "true" if item else "false"
            pairs.append((key, str(item)))
    return pairs


@dataclass(frozen=True, eq=False)
class Endpoint:
    """Immutable descriptor of one API operation.

    ``path`` accepts segments (``["v1", "menu", "[itemId]"]``) or a template
    string (``"/v1/menu/{item_id}"``); it is stored as normalized segments
    prefixed with ``api``. Shapes are fixed here and every request through
    the contract is validated against exactly these shapes.
    """

    method: str
    path: Union[str, Sequence[str]]
    allowed_roles: Iterable[Union[UserRole, str]]
    request_schema: Any = None
    response_schema: Any = None
    url_schema: Any = None
    description: str = ""
    field_descriptions: Mapping[str, str] = field(default_factory=dict)
    error_codes: Mapping[int, str] = field(default_factory=dict)
    examples: EndpointExamples = field(default_factory=EndpointExamples)
    query_options: QueryOptions = field(default_factory=QueryOptions)

    def __post_init__(self) -> None:
        method = str(self.method).upper().strip()
        if method not in HTTP_METHODS:
            raise ContractError(f"Unsupported HTTP method: {self.method!r}")
        object.__setattr__(self, "method", method)

        segments = with_api_prefix(split_path(self.path))
        object.__setattr__(self, "path", segments)

        roles = tuple(dict.fromkeys(role_value(r) for r in self.allowed_roles))
        if not roles:
            raise ContractError(f"{self.label}: allowed_roles must not be empty")
        object.__setattr__(self, "allowed_roles", roles)

        names = placeholders(segments)
        if len(set(names)) != len(names):
            raise ContractError(f"{self.label}: duplicate path placeholder")
        if names:
            if self.url_schema is None:
                raise ContractError(f"{self.label}: path placeholders {names} need a url_schema")
            declared = model_field_names(self.url_schema)
            if declared is not None:
                missing = [n for n in names if n not in declared]
                if missing:
                    raise ContractError(
                        f"{self.label}: placeholders {missing} are not declared by the url_schema"
                    )

        codes = dict(DEFAULT_ERROR_CODES)
        codes.update({int(k): v for k, v in (self.error_codes or {}).items()})
        object.__setattr__(self, "error_codes", _freeze(codes))
        object.__setattr__(self, "field_descriptions", _freeze(self.field_descriptions))

    # ----------------------------
    # identity
    # ----------------------------

    @property
    def path_template(self) -> str:
        return to_template(self.path)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.method, self.path_template)

    @property
    def label(self) -> str:
        # used as the prefix of error messages: "api/v1/cart:GET"
        return f"{'/'.join(self.path)}:{self.method}"

    @property
    def placeholders(self) -> tuple[str, ...]:
        return placeholders(self.path)

    @property
    def operation_id(self) -> str:
        return operation_id(self.method, self.path)

    @property
    def is_read(self) -> bool:
        return self.method in READ_METHODS

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Endpoint):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def __repr__(self) -> str:
        return f"Endpoint({self.method} {self.path_template})"

    # ----------------------------
    # behaviour
    # ----------------------------

    def requires_authentication(self) -> bool:
        return UserRole.PUBLIC.value not in self.allowed_roles

    def is_role_allowed(self, roles: Iterable[Union[UserRole, str]]) -> bool:
        return bool({role_value(r) for r in roles} & set(self.allowed_roles))

    def validate_request(self, payload: Any) -> ValidationResult[Any]:
        return validate_data(payload, self.request_schema)

    def validate_url_params(self, url_params: Any) -> ValidationResult[Any]:
        return validate_data(url_params, self.url_schema)

    def validate_response(self, data: Any) -> ValidationResult[Any]:
        return validate_data(data, self.response_schema)

    def build_request(
        self,
        payload: Any = None,
        url_params: Any = None,
        base_url: Optional[str] = None,
    ) -> ValidationResult[PreparedRequest]:
        """Validate inputs and build the URL and body for this operation.

        Invalid inputs give a failed result listing every offending field.
        An unresolved placeholder raises ContractError.
        """
        request = self.validate_request(payload)
        url = self.validate_url_params(url_params)
        if not request.success or not url.success:
            parts = []
            if not request.success:
                parts.append(f"Request validation error: {request.message}")
            if not url.success:
                parts.append(f"URL parameter validation error: {url.message}")
            return ValidationResult(
                success=False,
                message="; ".join(parts),
                errors=request.errors + url.errors,
            )

        url_values = dump_data(url.data, self.url_schema) or {}
        if not isinstance(url_values, Mapping):
            raise ContractError(f"{self.label}: url parameters must be an object")
        target = fill_template(self.path_template, url_values)
        if base_url:
            target = base_url.rstrip("/") + target

        body = dump_data(request.data, self.request_schema)
        query: dict[str, Any] = {}
        if self.is_read:
            if body is not None:
                if not isinstance(body, Mapping):
                    raise ContractError(f"{self.label}: read payloads must be an object")
                query = dict(body)
                pairs = _query_string(query)
                if pairs:
                    target = f"{target}?{urlencode(pairs)}"
            body = None

        return ValidationResult.ok(
            PreparedRequest(method=self.method, url=target, body=body, query=query)
        )


def create_endpoint(**kwargs: Any) -> dict[str, Endpoint]:
    """Build an Endpoint and return it keyed by its method."""

    endpoint = Endpoint(**kwargs)
    return {endpoint.method: endpoint}
