"""Server-Sent Events framing and semantic event decoding."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Optional

import pydantic

from .events import StreamEvent, decode_event
from .models import ValidationError

DONE_SENTINEL = "[DONE]"


@dataclass
class SSEFrame:
    """One dispatched SSE frame (the lines up to a blank line)."""

    event: Optional[str] = None
    data: str = ""
    id: Optional[str] = None


class SSEDecoder:
    """Incremental line-oriented SSE decoder.

    Only the fields the protocol uses are interpreted; ``retry`` and unknown field
    names are ignored as the SSE standard requires.
    """

    def __init__(self) -> None:
        self._event: Optional[str] = None
        self._data: list[str] = []
        self._id: Optional[str] = None

    def feed(self, line: str) -> Optional[SSEFrame]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        return None

    def flush(self) -> Optional[SSEFrame]:
        return self._dispatch()

    def _dispatch(self) -> Optional[SSEFrame]:
        if not self._data:
            # Frames without data lines are dropped; only the event name is reset.
            self._event = None
            return None
        frame = SSEFrame(event=self._event, data="\n".join(self._data), id=self._id)
        self._event = None
        self._data = []
        return frame


class EventStreamParser:
    """Turns raw SSE lines into an ordered sequence of :class:`StreamEvent`.

    The parser stops at the first malformed frame: :attr:`error` is set and every later
    line is ignored, while events decoded before it stay available to the caller.
    """

    def __init__(self) -> None:
        self._decoder = SSEDecoder()
        self._frames = 0
        self.error: Optional[ValidationError] = None
        self.finished = False

    def feed(self, line: str) -> list[StreamEvent]:
        if self.finished:
            return []
        frame = self._decoder.feed(line)
        return self._handle(frame)

    def close(self) -> list[StreamEvent]:
        if self.finished:
            return []
        events = self._handle(self._decoder.flush())
        self.finished = True
        return events

    def _handle(self, frame: Optional[SSEFrame]) -> list[StreamEvent]:
        if frame is None:
            return []
        self._frames += 1
        if frame.data.strip() == DONE_SENTINEL:
            self.finished = True
            return []
        if not frame.data:
            return self._fail("SSE frame without data", frame)
        try:
            payload = json.loads(frame.data)
        except json.JSONDecodeError as exc:
            return self._fail(f"Event data is not valid JSON: {exc.msg}", frame)
        if not isinstance(payload, dict):
            return self._fail("Event data must be a JSON object", frame)
        if frame.event is not None and payload.get("type") is not None and frame.event != payload["type"]:
            return self._fail(
                f"SSE event name '{frame.event}' does not match payload type '{payload['type']}'",
                frame,
            )
        try:
            return [decode_event(payload)]
        except pydantic.ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
                for err in exc.errors()
            )
            return self._fail(f"Event '{payload.get('type', '?')}' is malformed: {problems}", frame)

    def _fail(self, message: str, frame: SSEFrame) -> list[StreamEvent]:
        self.error = ValidationError(
            code="malformed-event",
            message=message,
            context={"frame": self._frames, "event": frame.event, "data": frame.data[:500]},
        )
        self.finished = True
        return []


def parse_sse_lines(lines: Iterable[str]) -> tuple[list[StreamEvent], Optional[ValidationError]]:
    """Decode a complete captured stream."""

    parser = EventStreamParser()
    events: list[StreamEvent] = []
    for line in lines:
        events.extend(parser.feed(line))
        if parser.finished:
            break
    events.extend(parser.close())
    return events, parser.error
