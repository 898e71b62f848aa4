"""
Process-wide logging and tracing for the telemetry endpoint.

Every log line is a JSON object carrying the request ID of the report
being processed, whether it arrived over HTTP or MQTT. Lines go to
stdout and to the application log file under LOG_DIR. Spans are
exported over OTLP only when OTEL_ENDPOINT is set.
"""

import json
import logging
import sys
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from middleware.request_id import request_id_var

# Handlers installed by configure_logging, so a second call replaces
# them without touching handlers owned by uvicorn or pytest.
_installed_handlers: List[logging.Handler] = []


class JSONFormatter(logging.Formatter):
    """
    Render a record as one JSON object per line.

    Fields passed as extra={"extra_data": {...}} are merged into the
    top level, so a measurement log carries id_telemetria and
    identificador next to the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": request_id_var.get(""),
            "source": f"{record.module}:{record.lineno}",
        }

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry.update(extra_data)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(settings: Optional[Any] = None) -> int:
    """
    Point the root logger at stdout and the application log file.

    Returns the effective level.
    """
    level_name = getattr(settings, "log_level", "INFO") or "INFO"
    level = getattr(logging, level_name.upper(), logging.INFO)

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_dir = getattr(settings, "log_dir", None)
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        log_file = Path(log_dir) / getattr(settings, "app_log_file", "app.log")
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    formatter = JSONFormatter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed_handlers.append(handler)

    root.setLevel(level)
    return level


def configure_tracing(settings: Optional[Any] = None):
    """
    Install an OTLP span exporter and return a tracer, or None when
    OTEL_ENDPOINT is unset or the exporter cannot be built.
    """
    logger = logging.getLogger(__name__)

    endpoint = getattr(settings, "otel_endpoint", None)
    if not endpoint:
        logger.debug("OTEL_ENDPOINT not set, spans are not exported")
        return None

    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    service_name = getattr(settings, "otel_service_name", "telemetry-endpoint")
    try:
        provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
    except Exception as e:
        logger.error(
            "Failed to configure OpenTelemetry tracing",
            extra={"extra_data": {"otel_endpoint": endpoint, "error": str(e)}}
        )
        return None

    logger.info(
        "Exporting spans",
        extra={"extra_data": {"otel_endpoint": endpoint, "service_name": service_name}}
    )
    return trace.get_tracer(service_name)


@contextmanager
def _span_with_attributes(tracer, name: str, attributes: Dict[str, Any]):
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span


class TelemetryService:
    """
    Logging and tracing handle shared by the HTTP app and the MQTT
    subscriber.

    Construction configures the root logger; tracing is set up only
    when the settings name a collector.
    """

    def __init__(self, settings: Optional[Any] = None):
        self.settings = settings
        self.log_level = configure_logging(settings)
        self.tracer = configure_tracing(settings)
        self._logger = logging.getLogger(__name__)
        self._logger.info(
            "Logging configured",
            extra={"extra_data": {
                "log_level": logging.getLevelName(self.log_level),
                "tracing": self.tracer is not None,
            }}
        )

    def create_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """
        Return a context manager for a span named after a pipeline step,
        such as ingestion.insert_measurement. Without a tracer the
        context manager does nothing.
        """
        if self.tracer is None:
            return nullcontext()
        return _span_with_attributes(self.tracer, name, attributes or {})

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None
    ) -> None:
        """Emit a metric as a debug log line."""
        self._logger.debug(
            f"{name}={value:.3f}",
            extra={"extra_data": {
                "metric_name": name,
                "metric_value": value,
                "tags": tags or {},
            }}
        )


_telemetry_service: Optional[TelemetryService] = None


def get_telemetry_service() -> Optional[TelemetryService]:
    return _telemetry_service


def initialize_telemetry(settings: Optional[Any] = None) -> TelemetryService:
    """Configure logging and tracing for the process and keep the handle."""
    global _telemetry_service
    _telemetry_service = TelemetryService(settings)
    return _telemetry_service


def set_request_id(request_id: str) -> None:
    """
    Bind a request ID to the current context.

    The MQTT handler calls this per message since no HTTP middleware
    runs there.
    """
    request_id_var.set(request_id)


def get_request_id() -> str:
    return request_id_var.get("")
