from __future__ import annotations

import json
import logging
from typing import Any, Dict

from prometheus_client import Counter  # type: ignore[import]
from prometheus_fastapi_instrumentator import Instrumentator, metrics  # type: ignore[import]

from backend.portal import config

try:  # pragma: no cover - optional dependency
    import google.cloud.logging  # type: ignore[import]
    from google.cloud.logging_v2.handlers import CloudLoggingHandler  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - optional dependency
    google = None  # type: ignore[assignment]
    CloudLoggingHandler = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

# Routes that would only add noise to the HTTP histograms.
_UNINSTRUMENTED_HANDLERS = [".*metrics", "/docs", "/redoc", "/openapi.json"]


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra={"json_fields": {...}}`` is merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple serialization
        entry: Dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "severity": record.levelname,
            "logger": record.name,
            "service": config.CLOUD_LOGGING_LOG_NAME,
            "message": record.getMessage(),
        }
        fields = getattr(record, "json_fields", None)
        if isinstance(fields, dict):
            entry.update(fields)
        if record.exc_info:
            entry["trace"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, separators=(",", ":"))


def _replace_root_handler(handler: logging.Handler, level: int) -> logging.Logger:
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    return root


def _install_cloud_logging(level: int) -> bool:
    if google is None or CloudLoggingHandler is None:
        logger.warning("ENABLE_CLOUD_LOGGING is set but google-cloud-logging is not installed")
        return False
    try:  # pragma: no cover - needs Google credentials
        handler = CloudLoggingHandler(client=google.cloud.logging.Client(), name=config.CLOUD_LOGGING_LOG_NAME)
    except Exception as exc:  # pragma: no cover - fallback to console
        logger.warning(
            "Cloud Logging unavailable; using JSON console output",
            extra={"json_fields": {"error": str(exc)}},
        )
        return False

    _replace_root_handler(handler, level)
    # The cloud transport logs through httpx itself; keep those records local.
    excluded = [name for name in config.CLOUD_LOGGING_EXCLUDED_LOGGERS if name]
    for name in excluded:
        logging.getLogger(name).propagate = False
    logger.info(
        "Cloud Logging handler configured",
        extra={"json_fields": {"logName": config.CLOUD_LOGGING_LOG_NAME, "excluded": excluded}},
    )
    return True


def configure_logging() -> None:
    """Route the root logger to Cloud Logging when enabled, else to JSON on stderr."""

    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    if config.ENABLE_CLOUD_LOGGING and _install_cloud_logging(level):
        return

    console = logging.StreamHandler()
    console.setFormatter(JsonFormatter())
    _replace_root_handler(console, level)
    logger.info(
        "JSON console logging configured",
        extra={"json_fields": {"logLevel": logging.getLevelName(level)}},
    )


def _guard_counter(name: str, documentation: str, label: str) -> Counter:
    return Counter(
        name,
        documentation,
        labelnames=(label,),
        namespace=config.PROMETHEUS_METRICS_NAMESPACE,
        subsystem=config.PROMETHEUS_METRICS_SUBSYSTEM,
    )


_guard_decisions = _guard_counter(
    "decisions_total",
    "Route guard decisions by outcome (render, loading, redirect)",
    "outcome",
)
_subscription_checks = _guard_counter(
    "subscription_checks_total",
    "Client-portal subscription lookups by result",
    "result",
)
_decision_store_errors = _guard_counter(
    "decision_store_errors_total",
    "Decision store operations that failed",
    "operation",
)


def configure_metrics(app) -> None:
    """Expose ``/metrics`` with request histograms when Prometheus is enabled."""

    if not config.ENABLE_PROMETHEUS_METRICS:
        logger.info("Prometheus metrics disabled via configuration")
        return

    labels = {
        "metric_namespace": config.PROMETHEUS_METRICS_NAMESPACE,
        "metric_subsystem": config.PROMETHEUS_METRICS_SUBSYSTEM,
    }
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=_UNINSTRUMENTED_HANDLERS,
    )
    instrumentator.add(metrics.default(**labels))
    instrumentator.instrument(app, **labels).expose(app, include_in_schema=False, should_gzip=True)
    logger.info("Prometheus metrics endpoint exposed", extra={"json_fields": labels})


def record_guard_decision(outcome: str) -> None:
    _guard_decisions.labels(outcome=outcome).inc()


def record_subscription_check(result: str) -> None:
    """``result`` is one of active, inactive, error or unconfigured."""
    _subscription_checks.labels(result=result).inc()


def record_decision_store_error(operation: str) -> None:
    _decision_store_errors.labels(operation=operation).inc()


__all__ = [
    "JsonFormatter",
    "configure_logging",
    "configure_metrics",
    "record_decision_store_error",
    "record_guard_decision",
    "record_subscription_check",
]
