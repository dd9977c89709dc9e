"""Structured logging, request correlation and optional OpenTelemetry tracing."""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

try:  # pragma: no cover - optional runtime dependency
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
except Exception:  # pragma: no cover - runs without the otel extra
    trace = None
    OTLPSpanExporter = None
    FastAPIInstrumentor = None
    Resource = None
    TracerProvider = None
    BatchSpanProcessor = None
    TraceIdRatioBased = None


REQUEST_ID_HEADER = "X-Request-ID"
_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Record attributes promoted to top-level JSON keys so log queries can filter
# on a device or calibration session directly.
CONTEXT_KEYS = ("device_id", "session_id", "topic", "command_id")

# Chatty third-party loggers capped at WARNING regardless of the service level.
NOISY_LOGGERS = ("aiomqtt", "paho", "httpx")

_STANDARD_RECORD_KEYS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
    "service",
    "request_id",
    "trace_id",
    "span_id",
}


def generate_request_id() -> str:
    return uuid.uuid4().hex


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def correlation_id() -> str:
    """The current HTTP request id, or a fresh id outside a request."""

    return get_request_id() or generate_request_id()


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_request_id()
        token = _request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            _request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class TraceContextFilter(logging.Filter):
    def __init__(self, service: str) -> None:
        super().__init__()
        self._service = service

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self._service
        record.request_id = getattr(record, "request_id", None) or get_request_id()
        record.trace_id = None
        record.span_id = None
        if trace is not None:
            ctx = trace.get_current_span().get_span_context()
            if ctx and ctx.trace_id:
                record.trace_id = f"{ctx.trace_id:032x}"
                record.span_id = f"{ctx.span_id:016x}"
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", None),
            "request_id": getattr(record, "request_id", None),
            "trace_id": getattr(record, "trace_id", None),
            "span_id": getattr(record, "span_id", None),
        }
        for key in CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_KEYS and key not in CONTEXT_KEYS
        }
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def configure_logging(service: str, level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(TraceContextFilter(service))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.handlers = [handler]
        logger.setLevel(level.upper())
        logger.propagate = False

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _parse_header_pairs(raw: str | None) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = value.strip()
    return pairs


@contextmanager
def command_span(name: str, **attributes: Any) -> Iterator[None]:
    """Wrap an outbound device command in a span when tracing is installed."""

    if trace is None:
        yield
        return
    tracer = trace.get_tracer("aquadash.commands")
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"aquadash.{key}", value)
        yield


def configure_tracing(
    *,
    service_name: str,
    service_version: str | None,
    otlp_endpoint: str,
    otlp_headers: str | None,
    sample_ratio: float = 1.0,
    app: FastAPI | None = None,
) -> None:
    if trace is None or OTLPSpanExporter is None:
        logging.getLogger(__name__).warning("OpenTelemetry not available; tracing disabled")
        return
    resource_attrs: dict[str, Any] = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    ratio = max(min(float(sample_ratio), 1.0), 0.0)
    provider = TracerProvider(resource=Resource.create(resource_attrs), sampler=TraceIdRatioBased(ratio))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, headers=_parse_header_pairs(otlp_headers)))
    )
    trace.set_tracer_provider(provider)
    if app is not None and FastAPIInstrumentor is not None:
        FastAPIInstrumentor.instrument_app(app)


def configure_observability(
    app: FastAPI,
    *,
    service_name: str,
    service_version: str | None,
    log_level: str,
    otel_enabled: bool,
    otlp_endpoint: str,
    otlp_headers: str | None,
    otel_sample_ratio: float = 1.0,
) -> None:
    configure_logging(service_name, log_level)
    app.add_middleware(RequestIdMiddleware)
    if otel_enabled:
        configure_tracing(
            service_name=service_name,
            service_version=service_version,
            otlp_endpoint=otlp_endpoint,
            otlp_headers=otlp_headers,
            sample_ratio=otel_sample_ratio,
            app=app,
        )
