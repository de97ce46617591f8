"""Catalog of compliance test templates.

Each template is a closed record: a pure request builder and a pure evaluator. The
registry order is the execution and reporting order, and template ids are stable
filter keys for callers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from .events import EventType
from .models import Exchange, RequestSpec, ResponseState, TestConfig, ValidationError
from .schema import output_items, output_text, validate_response_resource

RequestBuilder = Callable[[TestConfig], RequestSpec]
Evaluator = Callable[[Exchange], list[ValidationError]]

WEATHER_TOOL: dict[str, Any] = {
    "type": "function",
    "name": "get_weather",
    "description": "Get the current weather for a city.",
    "parameters": {
        "type": "object",
        "properties": {"location": {"type": "string", "description": "City name"}},
        "required": ["location"],
        "additionalProperties": False,
    },
}
TOOL_CALL_ID = "call_compliance_weather"
INVALID_API_KEY = "openresponses-compliance-invalid-key"


class UnknownTemplateError(KeyError):
    """Raised when a template id is not part of the registry."""


@dataclass(frozen=True)
class TestTemplate:
    """One registered compliance check."""

    __test__ = False

    id: str
    name: str
    description: str
    build_request: RequestBuilder
    evaluate: Evaluator
    handles_transport_errors: bool = False


class TemplateRegistry:
    """Ordered, immutable collection of templates keyed by id."""

    def __init__(self, templates: Iterable[TestTemplate]) -> None:
        self._templates = tuple(templates)
        ids = [template.id for template in self._templates]
        duplicates = sorted({template_id for template_id in ids if ids.count(template_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate template ids: {', '.join(duplicates)}")
        self._by_id = {template.id: template for template in self._templates}

    def __iter__(self) -> Iterator[TestTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def ids(self) -> list[str]:
        return [template.id for template in self._templates]

    def get(self, template_id: str) -> TestTemplate:
        try:
            return self._by_id[template_id]
        except KeyError:
            raise UnknownTemplateError(template_id) from None

    def unknown(self, template_ids: Iterable[str]) -> list[str]:
        return [template_id for template_id in template_ids if template_id not in self._by_id]

    def select(self, template_ids: Iterable[str] | None = None) -> list[TestTemplate]:
        """Return the templates named in ``template_ids`` in registration order."""

        if template_ids is None:
            return list(self._templates)
        wanted = set(template_ids)
        unknown = self.unknown(wanted)
        if unknown:
            raise UnknownTemplateError(", ".join(sorted(unknown)))
        return [template for template in self._templates if template.id in wanted]


# request helpers ----------------------------------------------------------


def _user_message(text: str) -> dict[str, Any]:
    return {"type": "message", "role": "user", "content": text}


def _responses_request(
    config: TestConfig,
    body: dict[str, Any],
    *,
    stream: bool = False,
    api_key: str | None = None,
) -> RequestSpec:
    headers = {"Content-Type": "application/json"}
    headers.update(config.auth_headers(api_key))
    payload = {"model": config.model, **body}
    if stream:
        headers["Accept"] = "text/event-stream"
        payload["stream"] = True
    return RequestSpec(method="POST", url=config.endpoint("/responses"), headers=headers, body=payload, stream=stream)


# assertion helpers --------------------------------------------------------


def _error(code: str, message: str, **context: Any) -> ValidationError:
    return ValidationError(code=code, message=message, context=context)


def _expect_completed(body: Any) -> list[ValidationError]:
    status = body.get("status") if isinstance(body, dict) else None
    if status != "completed":
        return [_error("unexpected-status", f"Expected response status 'completed', got {status!r}", status=status)]
    return []


def _expect_message_output(body: Any) -> list[ValidationError]:
    if not output_items(body, "message"):
        return [_error("missing-output", "Response output contains no assistant message")]
    if not output_text(body).strip():
        return [_error("empty-output", "Assistant message has no output_text content")]
    return []


def _expect_function_call(body: Any, name: str) -> list[ValidationError]:
    calls = output_items(body, "function_call")
    if not calls:
        return [_error("missing-function-call", "Response output contains no function_call item")]
    errors = []
    call = calls[0]
    if call.get("name") != name:
        errors.append(_error("wrong-function", f"Expected a call to '{name}', got {call.get('name')!r}"))
    try:
        arguments = json.loads(call.get("arguments") or "")
    except (TypeError, json.JSONDecodeError):
        errors.append(_error("invalid-arguments", "function_call.arguments is not valid JSON"))
    else:
        if not isinstance(arguments, dict):
            errors.append(_error("invalid-arguments", "function_call.arguments must encode a JSON object"))
    return errors


def _check_completed_message(exchange: Exchange) -> list[ValidationError]:
    body = exchange.final_response
    errors = validate_response_resource(body)
    if errors:
        return errors
    return _expect_completed(body) + _expect_message_output(body)


def _check_stream(exchange: Exchange, *, delta_type: str) -> list[ValidationError]:
    errors = []
    if not exchange.events:
        return [_error("no-events", "Streaming response produced no semantic events")]
    first = exchange.events[0]
    if first.type != EventType.RESPONSE_CREATED.value:
        errors.append(_error("first-event", f"First event must be response.created, got {first.type}"))
    if not exchange.events_of(delta_type):
        errors.append(_error("missing-delta", f"No {delta_type} events were streamed"))
    tracking = exchange.tracking
    if tracking is None or tracking.final_response_state is not ResponseState.COMPLETED:
        state = tracking.final_response_state.value if tracking and tracking.final_response_state else None
        errors.append(_error("not-completed", f"Stream did not end in response.completed (state: {state})"))
    final = exchange.final_response
    if final is not None:
        errors.extend(validate_response_resource(final))
    return errors


# evaluators ---------------------------------------------------------------


def evaluate_basic_response(exchange: Exchange) -> list[ValidationError]:
    return _check_completed_message(exchange)


def evaluate_streaming_response(exchange: Exchange) -> list[ValidationError]:
    errors = _check_stream(exchange, delta_type=EventType.OUTPUT_TEXT_DELTA.value)
    if errors:
        return errors
    if not exchange.events_of(EventType.OUTPUT_ITEM_ADDED.value):
        errors.append(_error("missing-item-events", "No response.output_item.added event was streamed"))
    errors.extend(_expect_message_output(exchange.final_response))
    return errors


def evaluate_tool_calling(exchange: Exchange) -> list[ValidationError]:
    body = exchange.final_response
    errors = validate_response_resource(body)
    if errors:
        return errors
    return _expect_function_call(body, WEATHER_TOOL["name"])


def evaluate_streaming_tool_call(exchange: Exchange) -> list[ValidationError]:
    errors = _check_stream(exchange, delta_type=EventType.FUNCTION_CALL_ARGUMENTS_DELTA.value)
    done_events = exchange.events_of(EventType.FUNCTION_CALL_ARGUMENTS_DONE.value)
    if not done_events:
        errors.append(_error("missing-arguments-done", "No response.function_call_arguments.done event was streamed"))
    if errors:
        return errors
    return _expect_function_call(exchange.final_response, WEATHER_TOOL["name"])


def evaluate_tool_call_output(exchange: Exchange) -> list[ValidationError]:
    body = exchange.final_response
    errors = validate_response_resource(body)
    if errors:
        return errors
    if output_items(body, "function_call") and not output_items(body, "message"):
        return [_error("tool-result-ignored", "Model called the tool again instead of using the supplied output")]
    return _expect_completed(body) + _expect_message_output(body)


def evaluate_auth_rejected(exchange: Exchange) -> list[ValidationError]:
    if exchange.error is not None and exchange.error.kind != "http-status":
        return [_error("transport", str(exchange.error))]
    if exchange.status_code in (401, 403):
        return []
    return [
        _error(
            "auth-not-enforced",
            f"Request with an invalid credential returned HTTP {exchange.status_code}, expected 401 or 403",
            status_code=exchange.status_code,
        )
    ]


# builders -----------------------------------------------------------------


def build_basic_response(config: TestConfig) -> RequestSpec:
    return _responses_request(config, {"input": [_user_message("Say hello in exactly 3 words.")]})


def build_streaming_response(config: TestConfig) -> RequestSpec:
    return _responses_request(config, {"input": [_user_message("Count from 1 to 5.")]}, stream=True)


def build_system_prompt(config: TestConfig) -> RequestSpec:
    return _responses_request(
        config,
        {
            "instructions": "You are a pirate. Always respond in pirate speak.",
            "input": [_user_message("Say hello.")],
        },
    )


def build_tool_calling(config: TestConfig) -> RequestSpec:
    return _responses_request(
        config,
        {
            "input": [_user_message("What's the weather like in San Francisco?")],
            "tools": [WEATHER_TOOL],
            "tool_choice": "required",
        },
    )


def build_tool_call_output(config: TestConfig) -> RequestSpec:
    return _responses_request(
        config,
        {
            "input": [
                _user_message("What's the weather like in San Francisco?"),
                {
                    "type": "function_call",
                    "call_id": TOOL_CALL_ID,
                    "name": WEATHER_TOOL["name"],
                    "arguments": json.dumps({"location": "San Francisco"}),
                },
                {
                    "type": "function_call_output",
                    "call_id": TOOL_CALL_ID,
                    "output": json.dumps({"temperature_c": 18, "conditions": "foggy"}),
                },
            ],
            "tools": [WEATHER_TOOL],
        },
    )


def build_streaming_tool_call(config: TestConfig) -> RequestSpec:
    return _responses_request(
        config,
        {
            "input": [_user_message("What's the weather like in Paris?")],
            "tools": [WEATHER_TOOL],
            "tool_choice": "required",
        },
        stream=True,
    )


def build_multi_turn(config: TestConfig) -> RequestSpec:
    return _responses_request(
        config,
        {
            "input": [
                _user_message("My name is Alice."),
                {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": "Nice to meet you, Alice!"}],
                },
                _user_message("What is my name?"),
            ]
        },
    )


def build_auth_rejected(config: TestConfig) -> RequestSpec:
    return _responses_request(config, {"input": [_user_message("Hello.")]}, api_key=INVALID_API_KEY)


DEFAULT_TEMPLATES = TemplateRegistry(
    [
        TestTemplate(
            id="basic-response",
            name="Basic Text Response",
            description="Single user message; validates the response resource schema.",
            build_request=build_basic_response,
            evaluate=evaluate_basic_response,
        ),
        TestTemplate(
            id="streaming-response",
            name="Streaming Response",
            description="Streamed text validated through semantic events and lifecycle tracking.",
            build_request=build_streaming_response,
            evaluate=evaluate_streaming_response,
        ),
        TestTemplate(
            id="system-prompt",
            name="System Prompt",
            description="Instructions are accepted alongside user input.",
            build_request=build_system_prompt,
            evaluate=evaluate_basic_response,
        ),
        TestTemplate(
            id="tool-calling",
            name="Tool Calling",
            description="Model emits a function_call for a declared tool.",
            build_request=build_tool_calling,
            evaluate=evaluate_tool_calling,
        ),
        TestTemplate(
            id="tool-call-output",
            name="Tool Call Output",
            description="Harness supplies a function_call_output and the model continues.",
            build_request=build_tool_call_output,
            evaluate=evaluate_tool_call_output,
        ),
        TestTemplate(
            id="streaming-tool-call",
            name="Streaming Tool Call",
            description="Function call arguments stream as deltas and complete before the item.",
            build_request=build_streaming_tool_call,
            evaluate=evaluate_streaming_tool_call,
        ),
        TestTemplate(
            id="multi-turn",
            name="Multi-turn Conversation",
            description="Earlier assistant turns are accepted as input items.",
            build_request=build_multi_turn,
            evaluate=evaluate_basic_response,
        ),
        TestTemplate(
            id="auth-rejected",
            name="Invalid Credentials Rejected",
            description="A bogus key in the configured auth header shape yields 401 or 403.",
            build_request=build_auth_rejected,
            evaluate=evaluate_auth_rejected,
            handles_transport_errors=True,
        ),
    ]
)
