from __future__ import annotations

import time
from typing import Callable

import pytest

from openresponses_compliance.models import (
    Exchange,
    RequestSpec,
    TestConfig,
    TestResult,
    TestStatus,
    TransportError,
    ValidationError,
    summarize,
)
from openresponses_compliance.parser import parse_sse_lines
from openresponses_compliance.templates import DEFAULT_TEMPLATES, TemplateRegistry, TestTemplate
from openresponses_compliance.runner import ComplianceRunner

from stream_factory import message_item, response_obj, text_stream, to_sse, tool_call_stream

Reply = Callable[[RequestSpec], Exchange]


class FakeTransport:
    """Answers each request from a per-test canned reply."""

    def __init__(self, replies: dict[str, Reply]) -> None:
        self.replies = replies
        self.sent: list[str] = []
        self.timeouts: list[float] = []

    async def send(self, spec: RequestSpec, timeout: float = 60.0) -> Exchange:
        test_id = spec.body["test_id"]
        self.sent.append(test_id)
        self.timeouts.append(timeout)
        return self.replies[test_id](spec)


def _ok(spec: RequestSpec) -> Exchange:
    return Exchange(request=spec, status_code=200, body=response_obj("completed", [message_item()]))


def _timed_out(spec: RequestSpec) -> Exchange:
    return Exchange(
        request=spec,
        error=TransportError(kind="timeout", message="Request exceeded 0.1s"),
        duration_ms=100.0,
    )


def _stream(payloads: list[dict]) -> Reply:
    def reply(spec: RequestSpec) -> Exchange:
        events, error = parse_sse_lines(to_sse(payloads).splitlines())
        return Exchange(request=spec, status_code=200, events=events, parse_error=error)

    return reply


def _always_passes(exchange: Exchange) -> list[ValidationError]:
    return []


def _template(test_id: str, *, stream: bool = False, evaluate=_always_passes) -> TestTemplate:
    def build(config: TestConfig) -> RequestSpec:
        return RequestSpec(
            url=config.endpoint("/responses"),
            headers=config.auth_headers(),
            body={"model": config.model, "test_id": test_id},
            stream=stream,
        )

    return TestTemplate(id=test_id, name=test_id.title(), description="", build_request=build, evaluate=evaluate)


def _registry(*templates: TestTemplate) -> TemplateRegistry:
    return TemplateRegistry(templates)


async def _run(
    config: TestConfig,
    templates: TemplateRegistry,
    transport: FakeTransport,
    *,
    only: list[str] | None = None,
    verbose: bool = False,
) -> tuple[list[TestResult], list[TestResult]]:
    emitted: list[TestResult] = []
    runner = ComplianceRunner(transport=transport, timeout=0.1, verbose=verbose)
    results = await runner.run_all(config, templates, emitted.append, only=only)
    return results, emitted


@pytest.mark.asyncio
async def test_filtered_run_emits_two_snapshots_per_selected_test(config: TestConfig) -> None:
    templates = _registry(*(_template(f"id{index}") for index in range(1, 5)))
    transport = FakeTransport({f"id{index}": _ok for index in range(1, 5)})

    results, emitted = await _run(config, templates, transport, only=["id4", "id2"])

    assert [(snapshot.id, snapshot.status) for snapshot in emitted] == [
        ("id2", TestStatus.RUNNING),
        ("id2", TestStatus.PASSED),
        ("id4", TestStatus.RUNNING),
        ("id4", TestStatus.PASSED),
    ]
    assert transport.sent == ["id2", "id4"]
    assert [result.id for result in results] == ["id2", "id4"]
    assert summarize(results).total == 2


@pytest.mark.asyncio
async def test_timeout_fails_only_that_test(config: TestConfig) -> None:
    templates = _registry(_template("first"), _template("slow"), _template("last"))
    transport = FakeTransport({"first": _ok, "slow": _timed_out, "last": _ok})

    results, emitted = await _run(config, templates, transport)

    assert [result.status for result in results] == [TestStatus.PASSED, TestStatus.FAILED, TestStatus.PASSED]
    assert results[1].errors == ["Transport error (timeout): Request exceeded 0.1s"]
    assert results[1].duration_ms == 100.0
    assert [snapshot.status for snapshot in emitted if snapshot.id == "last"] == [
        TestStatus.RUNNING,
        TestStatus.PASSED,
    ]
    assert transport.timeouts == [0.1, 0.1, 0.1]


@pytest.mark.asyncio
async def test_failed_test_keeps_redacted_request_and_response(config: TestConfig) -> None:
    templates = _registry(_template("slow"))

    results, _ = await _run(config, templates, FakeTransport({"slow": _timed_out}))

    assert results[0].request["headers"] == {"Authorization": "***"}
    assert results[0].request["body"]["model"] == "gpt-4o-mini"
    assert results[0].duration_ms is not None


@pytest.mark.asyncio
async def test_passing_test_omits_exchange_unless_verbose(config: TestConfig) -> None:
    templates = _registry(_template("ok"))

    quiet, _ = await _run(config, templates, FakeTransport({"ok": _ok}))
    verbose, _ = await _run(config, templates, FakeTransport({"ok": _ok}), verbose=True)

    assert quiet[0].request is None and quiet[0].response is None
    assert verbose[0].response["status"] == "completed"
    assert "errors" not in verbose[0].as_serializable()


@pytest.mark.asyncio
async def test_builder_exception_is_a_harness_error(config: TestConfig) -> None:
    def explode(config: TestConfig) -> RequestSpec:
        raise RuntimeError("boom")

    broken = TestTemplate(id="broken", name="Broken", description="", build_request=explode, evaluate=_always_passes)
    templates = _registry(broken, _template("after"))

    results, emitted = await _run(config, templates, FakeTransport({"after": _ok}))

    assert results[0].status is TestStatus.FAILED
    assert results[0].errors == ["Harness error: RuntimeError: boom"]
    assert results[1].status is TestStatus.PASSED
    assert len(emitted) == 4


@pytest.mark.asyncio
async def test_evaluator_exception_is_a_harness_error(config: TestConfig) -> None:
    def evaluate(exchange: Exchange) -> list[ValidationError]:
        raise KeyError("output")

    templates = _registry(_template("crashy", evaluate=evaluate))

    results, _ = await _run(config, templates, FakeTransport({"crashy": _ok}))

    assert results[0].status is TestStatus.FAILED
    assert results[0].errors[0].startswith("Harness error: KeyError")
    assert results[0].response is not None


@pytest.mark.asyncio
async def test_emitted_snapshots_are_copies(config: TestConfig) -> None:
    templates = _registry(_template("ok"))

    results, emitted = await _run(config, templates, FakeTransport({"ok": _ok}))

    assert emitted[0].status is TestStatus.RUNNING
    assert emitted[0] is not results[0]
    emitted[1].status = TestStatus.FAILED
    assert results[0].status is TestStatus.PASSED


@pytest.mark.asyncio
async def test_streaming_test_counts_events_and_reports_tracker_violations(config: TestConfig) -> None:
    broken_stream = text_stream()[:-1]
    templates = _registry(_template("good", stream=True), _template("bad", stream=True))
    transport = FakeTransport({"good": _stream(text_stream()), "bad": _stream(broken_stream)})

    results, _ = await _run(config, templates, transport)

    assert results[0].status is TestStatus.PASSED
    assert results[0].stream_events == len(text_stream())
    assert results[1].status is TestStatus.FAILED
    assert results[1].stream_events == len(broken_stream)
    assert any(error.startswith("[missing-terminal]") for error in results[1].errors)
    assert len(results[1].response["events"]) == len(broken_stream)


@pytest.mark.asyncio
async def test_malformed_stream_surfaces_parse_error(config: TestConfig) -> None:
    def reply(spec: RequestSpec) -> Exchange:
        lines = to_sse(text_stream()[:2]).splitlines() + ["data: {oops", ""]
        events, error = parse_sse_lines(lines)
        return Exchange(request=spec, status_code=200, events=events, parse_error=error)

    results, _ = await _run(config, _registry(_template("s", stream=True)), FakeTransport({"s": reply}))

    assert results[0].status is TestStatus.FAILED
    assert results[0].errors[0].startswith("[malformed-event]")
    assert results[0].stream_events == 2


@pytest.mark.asyncio
async def test_default_templates_against_a_compliant_server(config: TestConfig) -> None:
    class CompliantTransport:
        async def send(self, spec: RequestSpec, timeout: float = 60.0) -> Exchange:
            if spec.headers.get("Authorization") != "Bearer sk-test-123":
                return Exchange(
                    request=spec,
                    status_code=401,
                    error=TransportError(kind="http-status", message="HTTP 401", status_code=401),
                )
            if spec.stream:
                return _stream(_stream_for(spec))(spec)
            if spec.body.get("tool_choice") == "required":
                body = response_obj("completed", [_weather_call()])
            else:
                body = response_obj("completed", [message_item()])
            return Exchange(request=spec, status_code=200, body=body)

    emitted: list[TestResult] = []
    runner = ComplianceRunner(transport=CompliantTransport(), timeout=1.0)
    results = await runner.run_all(config, DEFAULT_TEMPLATES, emitted.append)

    assert {result.id: result.errors for result in results if result.errors} == {}
    assert len(emitted) == 2 * len(DEFAULT_TEMPLATES)


def _weather_call() -> dict:
    return {
        "id": "fc_1",
        "type": "function_call",
        "call_id": "call_1",
        "name": "get_weather",
        "arguments": '{"location": "Paris"}',
        "status": "completed",
    }


def _stream_for(spec: RequestSpec) -> list[dict]:
    return tool_call_stream() if spec.body.get("tools") else text_stream()


@pytest.mark.asyncio
async def test_duration_is_the_exchange_time_only(config: TestConfig) -> None:
    def slow_evaluate(exchange: Exchange) -> list[ValidationError]:
        time.sleep(0.05)
        return []

    def reply(spec: RequestSpec) -> Exchange:
        return Exchange(request=spec, status_code=200, body=response_obj("completed", [message_item()]), duration_ms=5.0)

    results, _ = await _run(config, _registry(_template("timed", evaluate=slow_evaluate)), FakeTransport({"timed": reply}))

    assert results[0].status is TestStatus.PASSED
    assert results[0].duration_ms == 5.0
