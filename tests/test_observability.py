"""
Tests for structured logging, metrics and health checks.
"""

import json
import logging

from paymaster_ledger.db import InMemoryEntityStore
from paymaster_ledger.observability import (
    MetricsCollector,
    StructuredFormatter,
    check_health,
    event_log_context,
    get_logger,
)


class TestStructuredLogging:

    def _record(self, **fields):
        record = logging.LogRecord(
            "paymaster_ledger.core.journal", logging.WARNING, __file__, 1,
            "No open DEPOSIT activity for leaf insertion", None, None,
        )
        record.__dict__.update(fields)
        return record

    def test_extra_fields_become_keys(self):
        line = json.loads(StructuredFormatter().format(self._record(account="base-0xabc")))
        assert line["level"] == "WARNING"
        assert line["message"] == "No open DEPOSIT activity for leaf insertion"
        assert line["account"] == "base-0xabc"

    def test_event_context_is_attached(self):
        with event_log_context("0xfeed", 42):
            line = json.loads(StructuredFormatter().format(self._record()))
        assert line["tx_hash"] == "0xfeed"
        assert line["block_number"] == 42

        line = json.loads(StructuredFormatter().format(self._record()))
        assert "tx_hash" not in line

    def test_context_logger_moves_kwargs_to_extra(self):
        msg, kwargs = get_logger("x").process("hello", {"pool": "p1", "exc_info": False})
        assert msg == "hello"
        assert kwargs["extra"] == {"pool": "p1"}
        assert kwargs["exc_info"] is False


class TestMetrics:

    def test_record_event_counts_outcomes(self):
        metrics = MetricsCollector()
        metrics.record_event("applied", 1.0)
        metrics.record_event("applied", 3.0)
        metrics.record_event("abandoned", 2.0)

        summary = metrics.get_summary()
        assert summary["events_applied"] == 2
        assert summary["events_abandoned"] == 1
        assert summary["processing_latency_p50_ms"] == 2.0

    def test_empty_summary(self):
        assert MetricsCollector().get_summary()["processing_latency_p95_ms"] is None


class TestHealth:

    def test_store_counts(self):
        status = check_health(entity_store=InMemoryEntityStore())
        assert status.healthy
        assert status.checks["entity_store"]["accounts"] == 0

    def test_broken_store_is_unhealthy(self):
        class BrokenStore(InMemoryEntityStore):
            def count(self, model):
                raise RuntimeError("connection refused")

        status = check_health(entity_store=BrokenStore())
        assert not status.healthy
        assert status.checks["entity_store"]["error"] == "connection refused"
