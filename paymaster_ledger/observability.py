"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with event context (tx hash, block)
- Request/response logging middleware for the read API
- Processing metrics (applied / duplicate / abandoned events, latency)
- Health check utilities

Configuration:
- PAYMASTER_LEDGER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- PAYMASTER_LEDGER_LOG_FORMAT: json, text (default: json in production)
- PAYMASTER_LEDGER_PRODUCTION: Enable production mode

Usage:
    from paymaster_ledger.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Pool created", network=network, pool_id=pool_id)
"""

import json
import logging
import os
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Context variables: set while one event (or one request) is processed
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
tx_hash_var: ContextVar[str] = ContextVar("tx_hash", default="")
block_number_var: ContextVar[Optional[int]] = ContextVar("block_number", default=None)


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("PAYMASTER_LEDGER_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("PAYMASTER_LEDGER_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("PAYMASTER_LEDGER_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_STANDARD_RECORD_FIELDS = frozenset((
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
))


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "WARNING",
        "logger": "paymaster_ledger.core.journal",
        "message": "No open DEPOSIT activity for leaf insertion",
        "tx_hash": "0xabc...",
        "block_number": 123,
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        tx_hash = tx_hash_var.get()
        if tx_hash:
            log_data["tx_hash"] = tx_hash

        block_number = block_number_var.get()
        if block_number is not None:
            log_data["block_number"] = block_number

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        tx_hash = tx_hash_var.get()
        if tx_hash:
            prefix = f"[{tx_hash[:10]}] "
        else:
            request_id = request_id_var.get()
            if request_id:
                prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Unknown contract address", address=address)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra", {}))

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at startup (API server or CLI).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())

    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@contextmanager
def event_log_context(tx_hash: str, block_number: int) -> Generator[None, None, None]:
    """Attach one event's transaction hash and block to every log line inside."""
    tx_token = tx_hash_var.set(tx_hash)
    block_token = block_number_var.set(block_number)
    try:
        yield
    finally:
        tx_hash_var.reset(tx_token)
        block_number_var.reset(block_token)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that sets up request context for logging.

    Generates a request ID per request (or honours X-Request-ID) and
    logs each request with its timing.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        token = request_id_var.set(request_id)

        logger = get_logger("paymaster_ledger.request")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            raise

        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    events_applied: int = 0
    events_duplicate: int = 0
    events_abandoned: int = 0
    events_unsupported: int = 0
    correlations_missed: int = 0
    correlations_expired: int = 0
    nullifier_reuses: int = 0

    # Histograms (simplified as lists)
    processing_latencies_ms: list = field(default_factory=list)

    def record_event(self, outcome: str, latency_ms: float) -> None:
        """Record one processed event by outcome name."""
        counter = f"events_{outcome}"
        if hasattr(self, counter):
            setattr(self, counter, getattr(self, counter) + 1)
        self.processing_latencies_ms.append(latency_ms)
        # Keep only last 1000 samples
        if len(self.processing_latencies_ms) > 1000:
            self.processing_latencies_ms = self.processing_latencies_ms[-1000:]

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        return {
            "events_applied": self.events_applied,
            "events_duplicate": self.events_duplicate,
            "events_abandoned": self.events_abandoned,
            "events_unsupported": self.events_unsupported,
            "correlations_missed": self.correlations_missed,
            "correlations_expired": self.correlations_expired,
            "nullifier_reuses": self.nullifier_reuses,
            "processing_latency_p50_ms": percentile(self.processing_latencies_ms, 0.5),
            "processing_latency_p95_ms": percentile(self.processing_latencies_ms, 0.95),
            "processing_latency_p99_ms": percentile(self.processing_latencies_ms, 0.99),
        }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(entity_store=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        entity_store: EntityStore instance
    """
    from .schemas import LedgerAccount, NetworkInfo

    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if entity_store is not None:
        try:
            checks["entity_store"] = {
                "status": "healthy",
                "store_type": type(entity_store).__name__,
                "networks": entity_store.count(NetworkInfo),
                "accounts": entity_store.count(LedgerAccount),
            }
        except Exception as e:
            checks["entity_store"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
