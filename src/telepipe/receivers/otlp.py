"""
OTLP/HTTP receiver (JSON encoding).

Routes:
    POST /v1/traces   POST /v1/metrics   POST /v1/logs   GET /health

Status codes follow OTLP/HTTP:
    200  accepted, body ``{"partialSuccess": {}}``
    400  malformed JSON, invalid OTLP payload or a broken gzip stream
    404  the receiver is not wired to a pipeline for that signal
    413  body above ``max_request_body_size``, before or after gunzip
    415  content type other than JSON (protobuf is not supported)
    500  any other downstream failure
    503  a downstream consumer refused the data, with ``Retry-After``

The app is served by uvicorn in a background thread so ``start`` returns
once the socket is bound.
"""

import logging
import threading
import time
import zlib
from typing import ClassVar

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from ..components.base import ConsumerRefusedError, TelepipeError
from ..logging.human import HumanLog
from ..model.types import Signal
from ..otlp import OTLPDecodeError, decode_json
from .base import Receiver

_hlog = HumanLog(logging.getLogger("telepipe.receiver"))


class OTLPReceiverSettings(BaseModel):
    endpoint: str = "0.0.0.0:4318"
    max_request_body_size: int = Field(default=20 * 1024 * 1024, ge=1)
    retry_after: int = Field(default=1, ge=0, description="Seconds sent with 503 responses.")
    startup_timeout: float = Field(default=10.0, gt=0)

    model_config = {"extra": "forbid"}

    @field_validator("endpoint")
    @classmethod
    def check_endpoint(cls, value: str) -> str:
        host, sep, port = value.rpartition(":")
        if not sep or not port.isdigit() or not 0 <= int(port) <= 65535:
            raise ValueError(f"endpoint must be host:port, got '{value}'")
        return value

    @property
    def host(self) -> str:
        return self.endpoint.rpartition(":")[0] or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.endpoint.rpartition(":")[2])


def _is_json(content_type: str | None) -> bool:
    if not content_type:
        return True
    return content_type.split(";")[0].strip().lower() == "application/json"


class _BodyTooLarge(Exception):
    pass


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, stopping as soon as it exceeds ``limit`` bytes."""
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise _BodyTooLarge()
        chunks.append(chunk)
    return b"".join(chunks)


def _gunzip(body: bytes, limit: int) -> bytes:
    """Inflate a gzip body without producing more than ``limit`` bytes.

    Raises:
        _BodyTooLarge: If the inflated body exceeds ``limit``.
        ValueError: If the stream is corrupt or truncated.
    """
    decompressor = zlib.decompressobj(wbits=31)
    try:
        data = decompressor.decompress(body, limit + 1)
    except zlib.error as e:
        raise ValueError(str(e)) from e
    if len(data) > limit:
        raise _BodyTooLarge()
    if not decompressor.eof:
        raise ValueError("truncated gzip stream")
    return data


def build_app(receiver: "OTLPReceiver") -> FastAPI:
    """Create the FastAPI app serving one receiver."""
    app = FastAPI(title="telepipe OTLP receiver", docs_url=None, redoc_url=None, openapi_url=None)
    settings: OTLPReceiverSettings = receiver.settings

    async def handle(signal: Signal, request: Request) -> JSONResponse:
        if not receiver.has_consumer(signal):
            return JSONResponse({"error": f"{signal.value} not enabled"}, status_code=404)
        if not _is_json(request.headers.get("content-type")):
            return JSONResponse(
                {"error": "unsupported content type, use application/json"}, status_code=415
            )

        limit = settings.max_request_body_size
        try:
            body = await _read_body(request, limit)
            if request.headers.get("content-encoding", "").lower() == "gzip":
                body = _gunzip(body, limit)
        except _BodyTooLarge:
            return JSONResponse({"error": "request body too large"}, status_code=413)
        except ValueError as e:
            return JSONResponse({"error": f"invalid gzip body: {e}"}, status_code=400)

        try:
            batch = decode_json(body or b"{}", signal)
        except OTLPDecodeError as e:
            receiver.log.info("receiver.otlp.bad_request", signal=signal.value, error=str(e))
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            await run_in_threadpool(receiver.deliver, batch)
        except ConsumerRefusedError as e:
            return JSONResponse(
                {"error": str(e)},
                status_code=503,
                headers={"Retry-After": str(settings.retry_after)},
            )
        except Exception as e:
            receiver.log.error(
                "receiver.otlp.deliver_failed",
                signal=signal.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return JSONResponse({"error": str(e)}, status_code=500)
        return JSONResponse({"partialSuccess": {}})

    @app.post("/v1/traces")
    async def traces(request: Request):
        return await handle(Signal.TRACES, request)

    @app.post("/v1/metrics")
    async def metrics(request: Request):
        return await handle(Signal.METRICS, request)

    @app.post("/v1/logs")
    async def logs(request: Request):
        return await handle(Signal.LOGS, request)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "component": str(receiver.id),
            "uptime_seconds": round(receiver.uptime, 3),
            "signals": [s.value for s in receiver.signals],
        }

    return app


class OTLPReceiver(Receiver):
    type_name: ClassVar[str] = "otlp"
    settings_model: ClassVar[type[BaseModel]] = OTLPReceiverSettings

    def __init__(self, component_id, settings: OTLPReceiverSettings) -> None:
        super().__init__(component_id, settings)
        self.app = build_app(self)
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None
        self._started_at: float | None = None
        self._failure: str | None = None

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_at if self._started_at is not None else 0.0

    @property
    def bound_endpoint(self) -> str | None:
        """``host:port`` actually listened on (resolves port 0)."""
        if self._server is None or not self._server.started:
            return None
        for server in self._server.servers:
            for sock in server.sockets:
                host, port = sock.getsockname()[:2]
                return f"{host}:{port}"
        return None

    def _serve(self, server: uvicorn.Server) -> None:
        # uvicorn calls sys.exit when it cannot bind
        try:
            server.run()
        except SystemExit as e:
            self._failure = f"server exited with code {e.code}"

    def start(self) -> None:
        if self._thread is not None:
            return
        config = uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level="warning",
            lifespan="off",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._failure = None
        self._thread = threading.Thread(
            target=self._serve, args=(self._server,), name=f"receiver-{self.id}", daemon=True
        )
        self._started_at = time.monotonic()
        self._thread.start()

        deadline = time.monotonic() + self.settings.startup_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self._thread = None
                reason = f" ({self._failure})" if self._failure else ""
                raise TelepipeError(
                    f"receiver '{self.id}' could not listen on {self.settings.endpoint}{reason}"
                )
            time.sleep(0.01)

        endpoint = self.bound_endpoint or self.settings.endpoint
        self.log.info("receiver.otlp.started", endpoint=endpoint)
        _hlog.receiver_listening(str(self.id), endpoint)

    def shutdown(self) -> None:
        if self._server is None or self._thread is None:
            return
        self._server.should_exit = True
        self._thread.join(timeout=10)
        self._thread = None
        self._server = None
        self.log.info("receiver.otlp.stopped")
