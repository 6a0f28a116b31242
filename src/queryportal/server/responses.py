from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from queryportal.contract.endpoint import Endpoint
from queryportal.contract.validation import dump_data
from queryportal.domain.models import Envelope, ErrorEnvelope, SuccessEnvelope


class PipelineStage(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ROLE_CHECKED = "role_checked"
    URL_VALIDATED = "url_validated"
    BODY_VALIDATED = "body_validated"
    HANDLER_EXECUTED = "handler_executed"
    RESPONSE_VALIDATED = "response_validated"
    SENT = "sent"


@dataclass(frozen=True)
class PipelineResponse:
    status_code: int
    envelope: Envelope
    stage: PipelineStage

    @property
    def success(self) -> bool:
        return self.envelope.success

    def to_json(self) -> dict[str, Any]:
        return self.envelope.model_dump(mode="json", by_alias=True)


def error_message(endpoint: Endpoint, message: str) -> str:
    return f"[{endpoint.label}]: {message}"


def create_error_response(
    endpoint: Endpoint,
    message: str,
    status_code: int,
    stage: PipelineStage,
) -> PipelineResponse:
    envelope = ErrorEnvelope(message=error_message(endpoint, message), error_code=status_code)
    return PipelineResponse(status_code=status_code, envelope=envelope, stage=stage)


def create_success_response(
    endpoint: Endpoint,
    data: Any,
    status_code: int = 200,
) -> PipelineResponse:
    """``data`` must already be validated against the response shape."""

    envelope = SuccessEnvelope(data=dump_data(data, endpoint.response_schema))
    return PipelineResponse(status_code=status_code, envelope=envelope, stage=PipelineStage.SENT)
