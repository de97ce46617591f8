"""Reconstruction of response and item lifecycles from a semantic event stream."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .events import (
    RESPONSE_TERMINAL_TYPES,
    EventType,
    FunctionCallArgumentsDeltaEvent,
    FunctionCallArgumentsDoneEvent,
    ItemScopedEvent,
    OutputItemEvent,
    OutputTextDeltaEvent,
    OutputTextDoneEvent,
    ResponseEvent,
    StreamEvent,
    UnknownEvent,
)
from .models import ItemState, ResponseState, ValidationError

_TERMINAL_RESPONSE_STATES = {
    EventType.RESPONSE_COMPLETED.value: ResponseState.COMPLETED,
    EventType.RESPONSE_FAILED.value: ResponseState.FAILED,
    EventType.RESPONSE_INCOMPLETE.value: ResponseState.INCOMPLETE,
}
_FAILED_ITEM_STATUSES = {"failed", "incomplete"}


@dataclass(frozen=True)
class TrackerPolicy:
    """Which lifecycle invariants are enforced.

    Completion-ordering rules belong to the protocol revision, so they are switches
    here rather than hard-coded checks.
    """

    version: str = "open-responses/2025-12"
    require_terminal_items: bool = True
    require_arguments_done: bool = True
    check_accumulated_text: bool = True
    check_status_field: bool = True


DEFAULT_POLICY = TrackerPolicy()


@dataclass
class TrackedItem:
    item_id: str
    item_type: str
    output_index: Optional[int]
    state: ItemState
    text: dict[int, str] = field(default_factory=dict)
    arguments: str = ""
    saw_arguments_delta: bool = False
    arguments_done: bool = False
    dangling_reported: bool = False


@dataclass
class TrackingResult:
    final_response_state: Optional[ResponseState]
    item_states: dict[str, ItemState]
    violations: list[ValidationError]
    final_response: Optional[dict[str, Any]] = None
    item_types: dict[str, str] = field(default_factory=dict)

    @property
    def codes(self) -> list[str]:
        return [violation.code for violation in self.violations]


class StateTracker:
    """Replays an event sequence through the response and item state machines.

    The tracker holds no state between calls; the same events always yield the same
    result.
    """

    def __init__(self, policy: TrackerPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def track(self, events: Iterable[StreamEvent]) -> TrackingResult:
        run = _TrackingRun(self.policy)
        for event in run.order(list(events)):
            run.apply(event)
        run.finish()
        return TrackingResult(
            final_response_state=run.response_state,
            item_states={item_id: item.state for item_id, item in run.items.items()},
            violations=run.violations,
            final_response=run.final_response,
            item_types={item_id: item.item_type for item_id, item in run.items.items()},
        )


def track_events(events: Iterable[StreamEvent], policy: TrackerPolicy = DEFAULT_POLICY) -> TrackingResult:
    return StateTracker(policy).track(events)


class _TrackingRun:
    def __init__(self, policy: TrackerPolicy) -> None:
        self.policy = policy
        self.response_state: Optional[ResponseState] = None
        self.final_response: Optional[dict[str, Any]] = None
        self.items: dict[str, TrackedItem] = {}
        self.violations: list[ValidationError] = []
        self._index_to_item: dict[int, str] = {}
        self._orphans: set[str] = set()
        self._not_created_reported = False

    def violation(self, code: str, message: str, event: StreamEvent | None = None, **context: Any) -> None:
        if event is not None:
            context.setdefault("sequence_number", event.sequence_number)
            context.setdefault("event_type", event.type)
        self.violations.append(ValidationError(code=code, message=message, context=context))

    # ordering -----------------------------------------------------------

    def order(self, events: list[StreamEvent]) -> list[StreamEvent]:
        if not events:
            return events
        numbers = [event.sequence_number for event in events]
        duplicates = sorted(number for number, count in Counter(numbers).items() if count > 1)
        if duplicates:
            self.violation(
                "duplicate-sequence",
                f"sequence_number values repeat within the stream: {duplicates}",
                sequence_numbers=duplicates,
            )
            return events

        ordered = sorted(events, key=lambda event: event.sequence_number)
        if numbers != [event.sequence_number for event in ordered]:
            position = next(index for index, (a, b) in enumerate(zip(numbers, numbers[1:])) if b < a) + 1
            self.violation(
                "out-of-order-sequence",
                f"Event with sequence_number {numbers[position]} arrived after {numbers[position - 1]}",
                position=position,
            )
        if ordered[0].sequence_number != 0:
            self.violation(
                "sequence-start",
                f"First sequence_number is {ordered[0].sequence_number}, expected 0",
            )
        missing = [
            (prev.sequence_number, cur.sequence_number)
            for prev, cur in zip(ordered, ordered[1:])
            if cur.sequence_number != prev.sequence_number + 1
        ]
        if missing:
            self.violation(
                "sequence-gap",
                "sequence_number skips after " + ", ".join(str(prev) for prev, _ in missing),
                gaps=[list(pair) for pair in missing],
            )
        return ordered

    # dispatch -----------------------------------------------------------

    def apply(self, event: StreamEvent) -> None:
        if self.response_state is not None and self.response_state.is_terminal:
            if event.type in RESPONSE_TERMINAL_TYPES:
                self.violation(
                    "duplicate-terminal",
                    f"Response already {self.response_state.value}, got {event.type}",
                    event,
                )
            else:
                self.violation(
                    "event-after-terminal",
                    f"{event.type} arrived after the response became {self.response_state.value}",
                    event,
                )
            return

        if isinstance(event, ResponseEvent):
            self._on_response(event)
            return
        if isinstance(event, UnknownEvent):
            return
        if self.response_state is None:
            self._not_created(event)
        if isinstance(event, OutputItemEvent):
            if event.type == EventType.OUTPUT_ITEM_ADDED.value:
                self._on_item_added(event)
            else:
                self._on_item_done(event)
        elif isinstance(event, ItemScopedEvent):
            self._on_item_delta(event)

    def finish(self) -> None:
        if self.response_state is None or not self.response_state.is_terminal:
            state = self.response_state.value if self.response_state else "never created"
            self.violation(
                "missing-terminal",
                f"Stream ended without response.completed/failed/incomplete (state: {state})",
            )
        if self.policy.require_terminal_items:
            self._report_dangling("stream ended")

    # response -----------------------------------------------------------

    def _not_created(self, event: StreamEvent) -> None:
        if self._not_created_reported:
            return
        self._not_created_reported = True
        self.violation("response-not-created", f"{event.type} arrived before response.created", event)

    def _on_response(self, event: ResponseEvent) -> None:
        if event.type == EventType.RESPONSE_CREATED.value:
            if self.response_state is not None:
                self.violation("duplicate-created", "response.created was sent more than once", event)
                return
            self.response_state = ResponseState.CREATED
            return

        if self.response_state is None:
            self._not_created(event)

        if event.type == EventType.RESPONSE_IN_PROGRESS.value:
            self.response_state = ResponseState.IN_PROGRESS
            return

        new_state = _TERMINAL_RESPONSE_STATES[event.type]
        status = event.response.get("status")
        if self.policy.check_status_field and status != new_state.value:
            self.violation(
                "status-mismatch",
                f"{event.type} carries response.status={status!r}",
                event,
            )
        self.response_state = new_state
        self.final_response = event.response
        if self.policy.require_terminal_items:
            self._report_dangling(event.type)
        if new_state is ResponseState.COMPLETED and self.policy.require_arguments_done:
            for item in self.items.values():
                if item.item_type == "function_call" and item.saw_arguments_delta and not item.arguments_done:
                    self.violation(
                        "incomplete-arguments",
                        f"Function call {item.item_id} streamed arguments but never sent arguments.done",
                        event,
                        item_id=item.item_id,
                    )

    def _report_dangling(self, reason: str) -> None:
        for item in self.items.values():
            if item.state.is_terminal or item.dangling_reported:
                continue
            item.dangling_reported = True
            self.violation(
                "dangling-item",
                f"Item {item.item_id} was still {item.state.value} when the {reason}",
                item_id=item.item_id,
            )

    # items --------------------------------------------------------------

    def _orphan(self, key: str, event: StreamEvent) -> None:
        if key in self._orphans:
            return
        self._orphans.add(key)
        self.violation(
            "orphaned-delta",
            f"{event.type} refers to item {key}, which was never added",
            event,
            item_id=key,
        )

    def _on_item_added(self, event: OutputItemEvent) -> None:
        item_id = event.item_ref
        if item_id is None:
            self.violation("missing-item-id", "output_item.added without item.id", event)
            return
        if item_id in self.items:
            self.violation("duplicate-item", f"Item {item_id} was added twice", event, item_id=item_id)
            return
        status = event.item.get("status")
        self.items[item_id] = TrackedItem(
            item_id=item_id,
            item_type=str(event.item.get("type", "unknown")),
            output_index=event.output_index,
            state=ItemState.PENDING if status == "pending" else ItemState.IN_PROGRESS,
        )
        self._index_to_item[event.output_index] = item_id

    def _on_item_done(self, event: OutputItemEvent) -> None:
        item_id = event.item_ref or self._index_to_item.get(event.output_index)
        item = self.items.get(item_id) if item_id else None
        if item is None:
            self._orphan(item_id or f"output_index:{event.output_index}", event)
            return
        if item.state.is_terminal:
            self.violation(
                "duplicate-terminal",
                f"Item {item.item_id} already {item.state.value}",
                event,
                item_id=item.item_id,
            )
            return
        status = event.item.get("status")
        item.state = ItemState.FAILED if status in _FAILED_ITEM_STATUSES else ItemState.COMPLETED

    def _on_item_delta(self, event: ItemScopedEvent) -> None:
        item_id = event.item_id
        if item_id is None and event.output_index is not None:
            item_id = self._index_to_item.get(event.output_index)
        item = self.items.get(item_id) if item_id else None
        if item is None:
            self._orphan(item_id or f"output_index:{event.output_index}", event)
            return
        if item.state.is_terminal:
            self.violation(
                "delta-after-terminal",
                f"{event.type} for item {item.item_id} after it became {item.state.value}",
                event,
                item_id=item.item_id,
            )
            return
        if item.state is ItemState.PENDING:
            item.state = ItemState.IN_PROGRESS

        if isinstance(event, OutputTextDeltaEvent):
            item.text[event.content_index] = item.text.get(event.content_index, "") + event.delta
        elif isinstance(event, OutputTextDoneEvent):
            streamed = item.text.get(event.content_index)
            if self.policy.check_accumulated_text and streamed is not None and streamed != event.text:
                self.violation(
                    "text-mismatch",
                    f"output_text.done text differs from the concatenated deltas for item {item.item_id}",
                    event,
                    item_id=item.item_id,
                )
        elif isinstance(event, FunctionCallArgumentsDeltaEvent):
            item.arguments += event.delta
            item.saw_arguments_delta = True
        elif isinstance(event, FunctionCallArgumentsDoneEvent):
            if (
                self.policy.check_accumulated_text
                and item.saw_arguments_delta
                and item.arguments != event.arguments
            ):
                self.violation(
                    "arguments-mismatch",
                    f"function_call_arguments.done differs from the concatenated deltas for item {item.item_id}",
                    event,
                    item_id=item.item_id,
                )
            item.arguments_done = True
