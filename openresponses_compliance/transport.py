"""HTTP transport for single request/response and request/stream exchanges."""

from __future__ import annotations

import asyncio
import json
import ssl
import time
from types import TracebackType
from typing import Any, Optional

import httpx
import structlog

from .models import Exchange, RequestSpec, TransportError
from .parser import EventStreamParser

DEFAULT_TIMEOUT = 60.0

LOGGER = structlog.get_logger("openresponses_compliance")


class HttpTransport:
    """Sends one request per call and captures everything the server returned.

    Failures never propagate: connection, TLS, timeout and non-2xx outcomes are stored
    on :attr:`Exchange.error`. There are no retries; the first attempt is what gets
    judged.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, *, verify: bool = True) -> None:
        if http_client is None:
            self._client = httpx.AsyncClient(timeout=None, verify=verify)
            self._owns_client = True
        else:
            self._client = http_client
            self._owns_client = False

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, spec: RequestSpec, timeout: float = DEFAULT_TIMEOUT) -> Exchange:
        exchange = Exchange(request=spec)
        logger = LOGGER.bind(method=spec.method, url=spec.url, stream=spec.stream)
        logger.debug("request_sent")
        start = time.perf_counter()
        try:
            if spec.stream:
                await asyncio.wait_for(self._stream(spec, exchange), timeout=timeout)
            else:
                await asyncio.wait_for(self._request(spec, exchange), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            exchange.error = TransportError(
                kind="timeout",
                message=f"No complete response within {timeout:g}s for {spec.method} {spec.url}",
            )
        except httpx.ConnectError as exc:
            exchange.error = TransportError(kind=_connect_error_kind(exc), message=_describe(exc, spec))
        except httpx.RequestError as exc:
            exchange.error = TransportError(kind="connection", message=_describe(exc, spec))
        exchange.duration_ms = round((time.perf_counter() - start) * 1000, 3)

        if exchange.error is None and exchange.status_code is not None and not 200 <= exchange.status_code < 300:
            exchange.error = TransportError(
                kind="http-status",
                message=f"{spec.method} {spec.url} returned HTTP {exchange.status_code}: {_excerpt(exchange.body)}",
                status_code=exchange.status_code,
            )
        logger.debug(
            "exchange_finished",
            status=exchange.status_code,
            events=len(exchange.events),
            duration_ms=exchange.duration_ms,
            error=exchange.error.kind if exchange.error else None,
        )
        return exchange

    async def _request(self, spec: RequestSpec, exchange: Exchange) -> None:
        response = await self._client.request(spec.method, spec.url, headers=spec.headers, json=spec.body)
        exchange.status_code = response.status_code
        exchange.headers = dict(response.headers)
        exchange.body = _decode_body(response.text)

    async def _stream(self, spec: RequestSpec, exchange: Exchange) -> None:
        async with self._client.stream(spec.method, spec.url, headers=spec.headers, json=spec.body) as response:
            exchange.status_code = response.status_code
            exchange.headers = dict(response.headers)
            if not response.is_success:
                await response.aread()
                exchange.body = _decode_body(response.text)
                return
            parser = EventStreamParser()
            async for line in response.aiter_lines():
                exchange.events.extend(parser.feed(line))
                if parser.finished:
                    break
            exchange.events.extend(parser.close())
            exchange.parse_error = parser.error
        LOGGER.debug("stream_closed", url=spec.url, events=len(exchange.events))


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _excerpt(body: Any, limit: int = 300) -> str:
    text = body if isinstance(body, str) else json.dumps(body)
    return text if len(text) <= limit else f"{text[:limit]}..."


def _connect_error_kind(exc: httpx.ConnectError) -> str:
    cause: Optional[BaseException] = exc
    while cause is not None:
        if isinstance(cause, ssl.SSLError):
            return "tls"
        cause = cause.__cause__ or cause.__context__
    return "tls" if "SSL" in str(exc) or "certificate" in str(exc) else "connection"


def _describe(exc: httpx.RequestError, spec: RequestSpec) -> str:
    detail = str(exc) or exc.__class__.__name__
    return f"{spec.method} {spec.url} failed: {detail}"
