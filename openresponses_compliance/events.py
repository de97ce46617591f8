"""Semantic streaming event vocabulary.

Every decoded SSE frame becomes one of the classes below. The set is closed: a payload
whose ``type`` is not part of the vocabulary is kept as :class:`UnknownEvent` together
with its raw payload, so providers may extend the stream without breaking decoding.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    RESPONSE_CREATED = "response.created"
    RESPONSE_IN_PROGRESS = "response.in_progress"
    RESPONSE_COMPLETED = "response.completed"
    RESPONSE_FAILED = "response.failed"
    RESPONSE_INCOMPLETE = "response.incomplete"
    OUTPUT_ITEM_ADDED = "response.output_item.added"
    OUTPUT_ITEM_DONE = "response.output_item.done"
    CONTENT_PART_ADDED = "response.content_part.added"
    CONTENT_PART_DONE = "response.content_part.done"
    OUTPUT_TEXT_DELTA = "response.output_text.delta"
    OUTPUT_TEXT_DONE = "response.output_text.done"
    FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    FUNCTION_CALL_ARGUMENTS_DONE = "response.function_call_arguments.done"


RESPONSE_TERMINAL_TYPES = frozenset(
    {
        EventType.RESPONSE_COMPLETED.value,
        EventType.RESPONSE_FAILED.value,
        EventType.RESPONSE_INCOMPLETE.value,
    }
)


class StreamEvent(BaseModel):
    """Envelope shared by all events: a type tag and a per-stream sequence number."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    sequence_number: int
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @property
    def item_ref(self) -> Optional[str]:
        """Item id this event refers to, if any."""

        return None


class ResponseEvent(StreamEvent):
    """``response.created`` / ``in_progress`` / ``completed`` / ``failed`` / ``incomplete``."""

    response: dict[str, Any]


class OutputItemEvent(StreamEvent):
    """``response.output_item.added`` and ``response.output_item.done``."""

    output_index: int
    item: dict[str, Any]

    @property
    def item_ref(self) -> Optional[str]:
        item_id = self.item.get("id")
        return str(item_id) if item_id is not None else None


class ItemScopedEvent(StreamEvent):
    """Base for events that address an item that is already in the output list."""

    item_id: Optional[str] = None
    output_index: Optional[int] = None

    @property
    def item_ref(self) -> Optional[str]:
        return self.item_id


class ContentPartEvent(ItemScopedEvent):
    content_index: int = 0
    part: dict[str, Any] = Field(default_factory=dict)


class OutputTextDeltaEvent(ItemScopedEvent):
    content_index: int = 0
    delta: str


class OutputTextDoneEvent(ItemScopedEvent):
    content_index: int = 0
    text: str


class FunctionCallArgumentsDeltaEvent(ItemScopedEvent):
    delta: str


class FunctionCallArgumentsDoneEvent(ItemScopedEvent):
    arguments: str


class UnknownEvent(StreamEvent):
    """Event type outside the known vocabulary; payload is available in ``raw``."""


EVENT_CLASSES: dict[str, type[StreamEvent]] = {
    EventType.RESPONSE_CREATED.value: ResponseEvent,
    EventType.RESPONSE_IN_PROGRESS.value: ResponseEvent,
    EventType.RESPONSE_COMPLETED.value: ResponseEvent,
    EventType.RESPONSE_FAILED.value: ResponseEvent,
    EventType.RESPONSE_INCOMPLETE.value: ResponseEvent,
    EventType.OUTPUT_ITEM_ADDED.value: OutputItemEvent,
    EventType.OUTPUT_ITEM_DONE.value: OutputItemEvent,
    EventType.CONTENT_PART_ADDED.value: ContentPartEvent,
    EventType.CONTENT_PART_DONE.value: ContentPartEvent,
    EventType.OUTPUT_TEXT_DELTA.value: OutputTextDeltaEvent,
    EventType.OUTPUT_TEXT_DONE.value: OutputTextDoneEvent,
    EventType.FUNCTION_CALL_ARGUMENTS_DELTA.value: FunctionCallArgumentsDeltaEvent,
    EventType.FUNCTION_CALL_ARGUMENTS_DONE.value: FunctionCallArgumentsDoneEvent,
}

ITEM_DELTA_TYPES = frozenset(
    {
        EventType.CONTENT_PART_ADDED.value,
        EventType.CONTENT_PART_DONE.value,
        EventType.OUTPUT_TEXT_DELTA.value,
        EventType.OUTPUT_TEXT_DONE.value,
        EventType.FUNCTION_CALL_ARGUMENTS_DELTA.value,
        EventType.FUNCTION_CALL_ARGUMENTS_DONE.value,
    }
)


def decode_event(payload: dict[str, Any]) -> StreamEvent:
    """Validate a JSON payload into its event class.

    Raises ``pydantic.ValidationError`` when the envelope or the type-specific fields
    are missing or have the wrong shape.
    """

    event_cls = EVENT_CLASSES.get(str(payload.get("type")), UnknownEvent)
    return event_cls.model_validate({**payload, "raw": payload})
