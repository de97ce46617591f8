"""Pydantic models of the response resource returned by ``POST /responses``."""

from __future__ import annotations

from typing import Any, Literal, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .models import ValidationError

ResponseStatus = Literal["queued", "in_progress", "completed", "failed", "incomplete", "cancelled"]
ItemStatus = Literal["in_progress", "completed", "incomplete"]


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class OutputTextPart(_Lenient):
    type: Literal["output_text"]
    text: str
    annotations: list[Any] = Field(default_factory=list)


class MessageItem(_Lenient):
    """Assistant message in the output list."""

    id: str
    type: Literal["message"]
    role: Literal["assistant"]
    status: ItemStatus
    content: list[dict[str, Any]]


class FunctionCallItem(_Lenient):
    """Tool invocation requested by the model."""

    id: str
    type: Literal["function_call"]
    call_id: str
    name: str
    arguments: str
    status: Optional[ItemStatus] = None


class Usage(_Lenient):
    input_tokens: int
    output_tokens: int
    total_tokens: int


class ResponseResource(_Lenient):
    id: str
    object: Literal["response"]
    created_at: int
    status: ResponseStatus
    model: str
    output: list[dict[str, Any]]
    error: Optional[dict[str, Any]] = None
    incomplete_details: Optional[dict[str, Any]] = None
    usage: Optional[Usage] = None


_ITEM_MODELS: dict[str, type[BaseModel]] = {
    "message": MessageItem,
    "function_call": FunctionCallItem,
}
_PART_MODELS: dict[str, type[BaseModel]] = {
    "output_text": OutputTextPart,
}


def _schema_errors(exc: pydantic.ValidationError, prefix: str) -> list[ValidationError]:
    errors = []
    for err in exc.errors():
        location = ".".join([prefix, *(str(part) for part in err["loc"])]).strip(".")
        errors.append(
            ValidationError(
                code="schema-violation",
                message=f"{location or 'response'}: {err['msg']}",
                context={"location": location, "type": err["type"]},
            )
        )
    return errors


def validate_response_resource(body: Any) -> list[ValidationError]:
    """Check a response object and each known output item against the schema.

    Output items and content parts of unknown types are accepted as-is.
    """

    if not isinstance(body, dict):
        return [
            ValidationError(
                code="schema-violation",
                message=f"Response body must be a JSON object, got {type(body).__name__}",
            )
        ]
    try:
        resource = ResponseResource.model_validate(body)
    except pydantic.ValidationError as exc:
        return _schema_errors(exc, "")

    errors: list[ValidationError] = []
    for index, item in enumerate(resource.output):
        item_model = _ITEM_MODELS.get(str(item.get("type")))
        if item_model is None:
            continue
        try:
            item_model.model_validate(item)
        except pydantic.ValidationError as exc:
            errors.extend(_schema_errors(exc, f"output.{index}"))
            continue
        if item_model is MessageItem:
            for part_index, part in enumerate(item["content"]):
                part_model = _PART_MODELS.get(str(part.get("type")))
                if part_model is None:
                    continue
                try:
                    part_model.model_validate(part)
                except pydantic.ValidationError as exc:
                    errors.extend(_schema_errors(exc, f"output.{index}.content.{part_index}"))
    return errors


def output_items(body: Any, item_type: str) -> list[dict[str, Any]]:
    if not isinstance(body, dict) or not isinstance(body.get("output"), list):
        return []
    return [item for item in body["output"] if isinstance(item, dict) and item.get("type") == item_type]


def output_text(body: Any) -> str:
    """Concatenate every ``output_text`` part across assistant messages."""

    chunks = []
    for message in output_items(body, "message"):
        for part in message.get("content") or []:
            if isinstance(part, dict) and part.get("type") == "output_text":
                chunks.append(str(part.get("text", "")))
    return "".join(chunks)
