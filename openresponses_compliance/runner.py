"""Compliance run orchestration."""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Optional

import structlog

from .models import Exchange, TestConfig, TestResult, summarize
from .templates import TestTemplate
from .tracker import StateTracker
from .transport import DEFAULT_TIMEOUT, HttpTransport

ProgressSink = Callable[[TestResult], None]

LOGGER = structlog.get_logger("openresponses_compliance")


class ComplianceRunner:
    """Runs templates one at a time and reports every status transition.

    Progress snapshots are emitted synchronously in template order: once when a test
    starts running and once when it reaches passed/failed.
    """

    def __init__(
        self,
        *,
        transport: HttpTransport,
        timeout: float = DEFAULT_TIMEOUT,
        verbose: bool = False,
        tracker: StateTracker | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout
        self._verbose = verbose
        self._tracker = tracker or StateTracker()

    async def run_all(
        self,
        config: TestConfig,
        templates: Iterable[TestTemplate],
        on_progress: ProgressSink,
        *,
        only: Optional[Iterable[str]] = None,
    ) -> list[TestResult]:
        wanted = set(only) if only is not None else None
        selected = [template for template in templates if wanted is None or template.id in wanted]
        results = [TestResult(id=template.id, name=template.name) for template in selected]
        LOGGER.info("run_started", base_url=config.base_url, model=config.model, tests=len(selected))

        for template, result in zip(selected, results):
            result.mark_running()
            on_progress(result.snapshot())
            await self._run_template(config, template, result)
            on_progress(result.snapshot())

        summary = summarize(results)
        LOGGER.info("run_finished", passed=summary.passed, failed=summary.failed, total=summary.total)
        return results

    async def _run_template(self, config: TestConfig, template: TestTemplate, result: TestResult) -> None:
        logger = LOGGER.bind(test_id=template.id)
        logger.info("test_started")
        exchange: Exchange | None = None
        timer = time.perf_counter()
        try:
            spec = template.build_request(config)
            exchange = await self._transport.send(spec, timeout=self._timeout)
            errors = self._evaluate(template, exchange)
        except Exception as exc:
            logger.exception("test_crashed")
            errors = [f"Harness error: {exc.__class__.__name__}: {exc}"]
        # Exchange timing covers dispatch to fully drained body; building and judging are excluded.
        duration_ms = exchange.duration_ms if exchange is not None else (time.perf_counter() - timer) * 1000

        if exchange is not None:
            if exchange.streamed:
                result.stream_events = len(exchange.events)
            if self._verbose or errors:
                result.request = exchange.request.redacted(config.auth_header_name)
                result.response = _response_payload(exchange)
        result.finish(errors=errors, duration_ms=duration_ms)
        logger.info(
            "test_finished",
            status=result.status.value,
            duration_ms=result.duration_ms,
            errors=len(errors),
        )

    def _evaluate(self, template: TestTemplate, exchange: Exchange) -> list[str]:
        if exchange.error is not None and not template.handles_transport_errors:
            return [str(exchange.error)]

        errors: list[str] = []
        if exchange.streamed and exchange.error is None:
            if exchange.parse_error is not None:
                errors.append(str(exchange.parse_error))
            exchange.tracking = self._tracker.track(exchange.events)
            errors.extend(str(violation) for violation in exchange.tracking.violations)
        errors.extend(str(error) for error in template.evaluate(exchange))
        return errors


def _response_payload(exchange: Exchange) -> Any:
    if not exchange.streamed or exchange.error is not None:
        return exchange.body
    return {
        "status_code": exchange.status_code,
        "events": [event.raw or event.model_dump(mode="json") for event in exchange.events],
        "final_response": exchange.final_response,
    }


async def run_all(
    config: TestConfig,
    templates: Iterable[TestTemplate],
    on_progress: ProgressSink,
    *,
    only: Optional[Iterable[str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    verbose: bool = False,
) -> list[TestResult]:
    """Run templates against ``config.base_url`` with a fresh HTTP transport."""

    async with HttpTransport() as transport:
        runner = ComplianceRunner(transport=transport, timeout=timeout, verbose=verbose)
        return await runner.run_all(config, templates, on_progress, only=only)
