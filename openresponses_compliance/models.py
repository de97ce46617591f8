"""Configuration, exchange and result models for the compliance engine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:  # pragma: no cover
    from .events import StreamEvent


class ResultStateError(RuntimeError):
    """Raised when a TestResult is moved through an invalid transition."""


class TestStatus(str, Enum):
    """Lifecycle of a single compliance test."""

    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TestStatus.PASSED, TestStatus.FAILED)


class ItemState(str, Enum):
    """Derived lifecycle state of one output item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemState.COMPLETED, ItemState.FAILED)


class ResponseState(str, Enum):
    """Derived lifecycle state of the response as a whole."""

    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"

    @property
    def is_terminal(self) -> bool:
        return self in (ResponseState.COMPLETED, ResponseState.FAILED, ResponseState.INCOMPLETE)


class TestConfig(BaseModel):
    """Resolved run configuration shared by every template."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    base_url: str
    api_key: str
    model: str = "gpt-4o-mini"
    auth_header_name: str = "Authorization"
    use_bearer_prefix: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        """Build the credential header in the configured shape."""

        key = self.api_key if api_key is None else api_key
        value = f"Bearer {key}" if self.use_bearer_prefix else key
        return {self.auth_header_name: value}

    def endpoint(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"


class RequestSpec(BaseModel):
    """Fully built HTTP request produced by a template."""

    model_config = ConfigDict(frozen=True)

    method: str = "POST"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
    stream: bool = False

    def redacted(self, auth_header_name: str | None = None) -> dict[str, Any]:
        """Return a serializable copy with credential values masked."""

        payload = self.model_dump(mode="json")
        sensitive = {"authorization", "x-api-key", "api-key"}
        if auth_header_name:
            sensitive.add(auth_header_name.lower())
        payload["headers"] = {
            key: ("***" if key.lower() in sensitive else value) for key, value in self.headers.items()
        }
        return payload


class ValidationError(BaseModel):
    """A protocol violation or assertion failure attached to one test."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class TransportError(BaseModel):
    """Network, timeout or HTTP status failure observed by the transport."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        return f"Transport error ({self.kind}): {self.message}"


class Exchange(BaseModel):
    """One captured request/response or request/stream interaction."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: RequestSpec
    status_code: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    events: list[Any] = Field(default_factory=list)
    parse_error: Optional[ValidationError] = None
    tracking: Any = None
    duration_ms: float = 0.0
    error: Optional[TransportError] = None

    @property
    def streamed(self) -> bool:
        return self.request.stream

    @property
    def final_response(self) -> Any:
        """Response object from the terminal stream event, else the JSON body."""

        if self.tracking is not None and self.tracking.final_response is not None:
            return self.tracking.final_response
        if self.streamed:
            return None
        return self.body

    def events_of(self, event_type: str) -> list["StreamEvent"]:
        return [event for event in self.events if event.type == event_type]


class TestResult(BaseModel):
    """Per-template outcome, owned by the runner and copied to progress sinks."""

    __test__ = False

    id: str
    name: str
    status: TestStatus = TestStatus.PENDING
    duration_ms: Optional[float] = None
    stream_events: Optional[int] = None
    errors: Optional[list[str]] = None
    request: Optional[dict[str, Any]] = None
    response: Any = None

    def mark_running(self) -> None:
        if self.status is not TestStatus.PENDING:
            raise ResultStateError(f"Test '{self.id}' cannot start from status {self.status.value}")
        self.status = TestStatus.RUNNING

    def finish(self, *, errors: list[str], duration_ms: float) -> None:
        """Move to passed/failed exactly once."""

        if self.status is not TestStatus.RUNNING:
            raise ResultStateError(f"Test '{self.id}' cannot finish from status {self.status.value}")
        self.duration_ms = round(duration_ms, 3)
        if errors:
            self.errors = list(errors)
            self.status = TestStatus.FAILED
        else:
            self.status = TestStatus.PASSED

    def snapshot(self) -> "TestResult":
        return self.model_copy(deep=True)

    def as_serializable(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RunSummary(BaseModel):
    """Aggregate counts over terminal results."""

    passed: int = 0
    failed: int = 0
    total: int = 0

    @property
    def any_failed(self) -> bool:
        return self.failed > 0


def summarize(results: list[TestResult]) -> RunSummary:
    """Count passed/failed over terminal results only."""

    finished = [result for result in results if result.status.is_terminal]
    passed = sum(1 for result in finished if result.status is TestStatus.PASSED)
    return RunSummary(passed=passed, failed=len(finished) - passed, total=len(finished))
