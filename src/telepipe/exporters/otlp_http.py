"""
OTLP/HTTP exporter (JSON encoding) built on httpx.

Retries with tenacity for transient failures only:
- connection errors and timeouts
- HTTP 429, 502, 503 and 504 (``Retry-After`` sets a floor on the wait)

Any other 4xx/5xx response is a permanent failure: ``ExportError`` with
``retryable=False`` is raised immediately.

The exponential backoff is bounded by ``retry_on_failure.max_interval`` and the
whole export by ``retry_on_failure.max_elapsed_time``. Shutdown interrupts a
pending backoff.
"""

import gzip
import logging
import threading
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import ClassVar, Literal

import httpx
from pydantic import BaseModel, Field, field_validator
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    stop_any,
    stop_when_event_set,
    wait_exponential,
)

from ..components.base import ExportError
from ..logging.human import HumanLog
from ..model.types import Signal, TelemetryBatch
from ..otlp import encode_json
from .base import Exporter, SendingQueueSettings

_hlog = HumanLog(logging.getLogger("telepipe.exporter"))

_RETRYABLE_STATUS = frozenset({429, 502, 503, 504})

_SIGNAL_PATHS = {
    Signal.TRACES: "/v1/traces",
    Signal.METRICS: "/v1/metrics",
    Signal.LOGS: "/v1/logs",
}


class RetrySettings(BaseModel):
    enabled: bool = True
    initial_interval: float = Field(default=5.0, gt=0)
    max_interval: float = Field(default=30.0, gt=0)
    max_elapsed_time: float = Field(default=300.0, ge=0, description="0 = retry forever.")

    model_config = {"extra": "forbid"}


class OTLPHTTPSettings(BaseModel):
    endpoint: str
    traces_endpoint: str | None = None
    metrics_endpoint: str | None = None
    logs_endpoint: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=10.0, gt=0)
    compression: Literal["none", "gzip"] = "none"
    retry_on_failure: RetrySettings = Field(default_factory=RetrySettings)
    sending_queue: SendingQueueSettings = Field(default_factory=SendingQueueSettings)

    model_config = {"extra": "forbid"}

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("endpoint must start with http:// or https://")
        return value.rstrip("/")

    def url_for(self, signal: Signal) -> str:
        explicit = getattr(self, f"{signal.value}_endpoint")
        return explicit or self.endpoint + _SIGNAL_PATHS[signal]


class RetryableExportError(ExportError):
    """Transient failure, ``retry_after`` is the server's hint in seconds."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, retryable=True)
        self.retry_after = retry_after


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delay in seconds or an HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ExportError) and exc.retryable


class OTLPHTTPExporter(Exporter):
    type_name: ClassVar[str] = "otlp_http"
    settings_model: ClassVar[type[BaseModel]] = OTLPHTTPSettings

    def __init__(
        self,
        component_id,
        settings: OTLPHTTPSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(component_id, settings)
        self._transport = transport
        self._client: httpx.Client | None = None
        self._stopping = threading.Event()

    def start(self) -> None:
        headers = {"Content-Type": "application/json", **self.settings.headers}
        if self.settings.compression == "gzip":
            headers["Content-Encoding"] = "gzip"
        self._stopping.clear()
        self._client = httpx.Client(
            headers=headers,
            timeout=self.settings.timeout,
            transport=self._transport,
        )
        super().start()

    def shutdown(self) -> None:
        self._stopping.set()
        super().shutdown()
        if self._client is not None:
            self._client.close()
            self._client = None

    # -- retry ---------------------------------------------------------------

    def _wait(self, retry_state: RetryCallState) -> float:
        retry = self.settings.retry_on_failure
        backoff = wait_exponential(
            multiplier=retry.initial_interval,
            min=retry.initial_interval,
            max=retry.max_interval,
        )(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return max(backoff, retry_after)
        return backoff

    def _on_retry_sleep(self, retry_state: RetryCallState) -> None:
        """Callback called before each retry. Logs the attempt and wait time."""
        next_wait = retry_state.next_action.sleep if retry_state.next_action else 0
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self.log.warning(
            "exporter.retry",
            attempt=retry_state.attempt_number,
            wait_seconds=round(next_wait, 1),
            error=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
        )
        _hlog.exporter_retry(
            str(self.id), retry_state.attempt_number, next_wait, str(exc) if exc else None
        )

    def _retrying(self) -> Retrying:
        retry = self.settings.retry_on_failure
        if not retry.enabled:
            stop = stop_after_attempt(1)
        elif retry.max_elapsed_time:
            stop = stop_any(stop_after_delay(retry.max_elapsed_time), stop_when_event_set(self._stopping))
        else:
            stop = stop_when_event_set(self._stopping)
        return Retrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop,
            wait=self._wait,
            sleep=self._stopping.wait,
            before_sleep=self._on_retry_sleep,
            reraise=True,
        )

    # -- export ----------------------------------------------------------------

    def _post(self, url: str, body: bytes) -> None:
        if self._client is None:
            raise ExportError(f"exporter '{self.id}' is not started")
        try:
            response = self._client.post(url, content=body)
        except httpx.TransportError as e:
            raise RetryableExportError(f"{type(e).__name__}: {e}") from e

        if response.is_success:
            self._check_partial_success(response)
            return
        message = f"HTTP {response.status_code} from {url}"
        if response.status_code in _RETRYABLE_STATUS:
            raise RetryableExportError(
                message, retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )
        raise ExportError(f"{message}: {response.text[:200]}", retryable=False)

    def _check_partial_success(self, response: httpx.Response) -> None:
        try:
            partial = response.json().get("partialSuccess") or {}
        except ValueError:
            return
        rejected = 0
        for key in ("rejectedSpans", "rejectedDataPoints", "rejectedLogRecords"):
            rejected += int(partial.get(key) or 0)
        if rejected:
            self.log.warning(
                "exporter.partial_success",
                rejected=rejected,
                message=partial.get("errorMessage", ""),
            )

    def export(self, batch: TelemetryBatch) -> None:
        body = encode_json(batch).encode("utf-8")
        if self.settings.compression == "gzip":
            body = gzip.compress(body)
        url = self.settings.url_for(batch.signal)
        self.log.debug("exporter.send", url=url, items=len(batch), bytes=len(body))
        for attempt in self._retrying():
            with attempt:
                self._post(url, body)
