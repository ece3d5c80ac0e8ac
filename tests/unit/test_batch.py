# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for BatchExportProcessor."""

from __future__ import annotations

import gc
import os
import time
from unittest import mock

import pytest
from opentelemetry import context
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExportResult
from opentelemetry.trace import SpanContext, TraceFlags

from satchel.exceptions import ConfigError, ExporterError, ShutdownTimeoutError
from satchel.processors.batch import BatchExportProcessor, export_deadline


def _span(name: str = "span") -> ReadableSpan:
    return ReadableSpan(name=name)


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class TestConstruction:
    """Parameter validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_queue_size": 0},
            {"schedule_delay_millis": 0},
            {"export_timeout_millis": -1},
            {"max_export_batch_size": 0},
            {"max_queue_size": 4, "max_export_batch_size": 8},
        ],
    )
    def test_invalid_parameters(self, recording_exporter, kwargs):
        with pytest.raises(ConfigError):
            BatchExportProcessor(recording_exporter, **kwargs)

    def test_worker_is_daemon(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter)
        try:
            assert processor._worker.daemon
            assert processor._worker.name == "satchel.BatchExportProcessor"
        finally:
            processor.shutdown()


class TestExport:
    """Batch assembly and export triggers."""

    def test_full_batch_exported_without_waiting_for_delay(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000, max_export_batch_size=4)
        try:
            for i in range(4):
                processor.on_end(_span(f"s{i}"))
            assert _wait_for(lambda: len(recording_exporter.spans) == 4)
            assert [len(b) for b in recording_exporter.batches] == [4]
        finally:
            processor.shutdown()

    def test_schedule_delay_exports_partial_batch(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=20, max_export_batch_size=100)
        try:
            processor.on_end(_span())
            assert _wait_for(lambda: len(recording_exporter.spans) == 1)
        finally:
            processor.shutdown()

    def test_batches_never_exceed_max_size(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000, max_export_batch_size=3)
        for i in range(10):
            processor.on_end(_span(f"s{i}"))
        processor.shutdown()

        assert len(recording_exporter.spans) == 10
        assert all(len(batch) <= 3 for batch in recording_exporter.batches)

    def test_export_order_preserved(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        for i in range(20):
            processor.on_end(_span(f"s{i}"))
        processor.shutdown()

        assert [s.name for s in recording_exporter.spans] == [f"s{i}" for i in range(20)]

    def test_unsampled_span_skipped(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter)
        unsampled = ReadableSpan(
            name="unsampled",
            context=SpanContext(trace_id=1, span_id=1, is_remote=False, trace_flags=TraceFlags(TraceFlags.DEFAULT)),
        )
        processor.on_end(unsampled)
        assert processor.queue_length == 0
        processor.shutdown()

    def test_export_runs_with_instrumentation_suppressed_and_deadline(self, recording_exporter):
        seen = {}

        def export(spans):
            seen["suppressed"] = context.get_value(context._SUPPRESS_INSTRUMENTATION_KEY)
            seen["deadline"] = export_deadline()
            return SpanExportResult.SUCCESS

        exporter = mock.MagicMock()
        exporter.export.side_effect = export
        processor = BatchExportProcessor(exporter, export_timeout_millis=5000)
        processor.on_end(_span())
        before = time.monotonic()
        processor.force_flush()
        processor.shutdown()

        assert seen["suppressed"] is True
        assert seen["deadline"] is not None
        assert seen["deadline"] <= before + 5.0 + 0.5

    def test_export_deadline_outside_export(self):
        assert export_deadline() is None


class TestExportFailures:
    """A failed export is logged and the batch discarded."""

    def test_failure_result_discards_batch(self, recording_exporter):
        recording_exporter.result = SpanExportResult.FAILURE
        processor = BatchExportProcessor(recording_exporter)
        processor.on_end(_span())
        assert processor.force_flush() is True
        assert processor.exported_spans == 0
        assert processor.queue_length == 0
        processor.shutdown()

    def test_exporter_error_logged_and_worker_survives(self, recording_exporter):
        recording_exporter.raises = ExporterError("connection refused")
        processor = BatchExportProcessor(recording_exporter)
        with mock.patch("satchel.processors.batch.logger") as logger:
            processor.on_end(_span("first"))
            processor.force_flush()
            assert logger.warning.called

        recording_exporter.raises = None
        processor.on_end(_span("second"))
        processor.force_flush()
        processor.shutdown()

        assert [s.name for s in recording_exporter.spans] == ["second"]

    def test_unexpected_exception_logged(self, recording_exporter):
        recording_exporter.raises = RuntimeError("bug")
        processor = BatchExportProcessor(recording_exporter)
        with mock.patch("satchel.processors.batch.logger") as logger:
            processor.on_end(_span())
            processor.force_flush()
            assert logger.exception.called
        assert processor._worker.is_alive()
        processor.shutdown()


class TestOverflow:
    """Queue overflow drops spans without blocking."""

    def test_overflow_drops_and_counts(self, recording_exporter):
        recording_exporter.gate.clear()
        processor = BatchExportProcessor(
            recording_exporter, max_queue_size=8, schedule_delay_millis=60000, max_export_batch_size=4
        )
        try:
            for i in range(4):
                processor.on_end(_span(f"first{i}"))
            assert recording_exporter.entered.wait(2.0)

            with mock.patch("satchel.processors.batch.record_spans_dropped") as recorded:
                started = time.monotonic()
                for i in range(18):
                    processor.on_end(_span(f"more{i}"))
                elapsed = time.monotonic() - started

            assert processor.queue_length == 8
            assert processor.dropped_spans == 10
            assert recorded.call_count == 10
            assert elapsed < 1.0
        finally:
            recording_exporter.gate.set()
            processor.shutdown()

        assert len(recording_exporter.spans) == 12
        assert processor.exported_spans == 12

    def test_drop_warning_throttled(self, recording_exporter):
        recording_exporter.gate.clear()
        processor = BatchExportProcessor(
            recording_exporter, max_queue_size=1, schedule_delay_millis=60000, max_export_batch_size=1
        )
        try:
            processor.on_end(_span())
            assert recording_exporter.entered.wait(2.0)
            processor.on_end(_span())
            with mock.patch("satchel.processors.batch.logger") as logger:
                for _ in range(5):
                    processor.on_end(_span())
            assert logger.warning.call_count == 1
        finally:
            recording_exporter.gate.set()
            processor.shutdown()


class TestFlushAndShutdown:
    """force_flush and shutdown semantics."""

    def test_force_flush_exports_everything_queued(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        for i in range(5):
            processor.on_end(_span(f"s{i}"))
        assert processor.force_flush(2000) is True
        assert len(recording_exporter.spans) == 5
        processor.shutdown()

    def test_force_flush_times_out(self, recording_exporter):
        recording_exporter.gate.clear()
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        try:
            processor.on_end(_span())
            assert processor.force_flush(50) is False
        finally:
            recording_exporter.gate.set()
            processor.shutdown()

    def test_shutdown_drains_queue(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        for i in range(100):
            processor.on_end(_span(f"s{i}"))

        started = time.monotonic()
        processor.shutdown(timeout_millis=1000)

        assert time.monotonic() - started < 1.0
        assert len(recording_exporter.spans) == 100
        assert recording_exporter.shutdown_called
        assert not processor._worker.is_alive()

    def test_shutdown_is_idempotent(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter)
        processor.shutdown()
        processor.shutdown()
        assert recording_exporter.shutdown_called

    def test_span_after_shutdown_dropped(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter)
        processor.shutdown()
        processor.on_end(_span())
        assert processor.queue_length == 0
        assert processor.dropped_spans == 0
        assert processor.force_flush() is True

    def test_shutdown_timeout_with_blocked_exporter(self, recording_exporter):
        recording_exporter.gate.clear()
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000, max_export_batch_size=1)
        try:
            processor.on_end(_span("stuck"))
            assert recording_exporter.entered.wait(2.0)
            processor.on_end(_span("queued"))

            started = time.monotonic()
            with pytest.raises(ShutdownTimeoutError):
                processor.shutdown(timeout_millis=100)
            assert time.monotonic() - started < 1.0
            assert recording_exporter.shutdown_called
        finally:
            recording_exporter.gate.set()

    def test_shutdown_default_budget_is_export_timeout(self, recording_exporter):
        recording_exporter.gate.clear()
        processor = BatchExportProcessor(recording_exporter, export_timeout_millis=50)
        try:
            processor.on_end(_span())
            processor.force_flush(0)
            assert recording_exporter.entered.wait(2.0)
            with pytest.raises(ShutdownTimeoutError):
                processor.shutdown()
        finally:
            recording_exporter.gate.set()


class TestForkSafety:
    """The worker thread is restarted in a forked child."""

    def test_after_fork_hook_registered(self, recording_exporter):
        with mock.patch("satchel.processors.batch.os.register_at_fork") as register:
            processor = BatchExportProcessor(recording_exporter)
        try:
            register.assert_called_once()
            assert callable(register.call_args.kwargs["after_in_child"])
        finally:
            processor.shutdown()

    def test_hook_ignores_collected_processor(self, recording_exporter):
        with mock.patch("satchel.processors.batch.os.register_at_fork") as register:
            processor = BatchExportProcessor(recording_exporter)
        hook = register.call_args.kwargs["after_in_child"]
        processor.shutdown()
        del processor
        gc.collect()

        hook()

    def test_reinit_restarts_worker_and_discards_parent_queue(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        old_condition, old_worker = processor._condition, processor._worker
        for i in range(3):
            processor.on_end(_span(f"parent{i}"))

        processor._at_fork_reinit()

        try:
            assert processor._worker is not old_worker
            assert processor._worker.is_alive()
            assert processor.queue_length == 0
            processor.on_end(_span("child"))
            assert processor.force_flush(2000) is True
            assert [s.name for s in recording_exporter.spans] == ["child"]
        finally:
            processor.shutdown()
            with old_condition:
                old_condition.notify_all()
            old_worker.join(1)

    def test_reinit_after_shutdown_keeps_worker_stopped(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter)
        processor.shutdown()
        stopped = processor._worker

        processor._at_fork_reinit()

        assert processor._worker is stopped
        assert not stopped.is_alive()

    @pytest.mark.skipif(not hasattr(os, "fork"), reason="requires os.fork")
    @pytest.mark.filterwarnings("ignore::DeprecationWarning")
    def test_forked_child_exports(self, recording_exporter):
        processor = BatchExportProcessor(recording_exporter, schedule_delay_millis=60000)
        try:
            pid = os.fork()
            if pid == 0:
                status = 1
                try:
                    processor.on_end(_span("from-child"))
                    if processor.force_flush(2000) and [s.name for s in recording_exporter.spans] == ["from-child"]:
                        status = 0
                finally:
                    os._exit(status)

            _, wait_status = os.waitpid(pid, 0)
            assert os.WIFEXITED(wait_status)
            assert os.WEXITSTATUS(wait_status) == 0

            processor.on_end(_span("from-parent"))
            assert processor.force_flush(2000) is True
            assert [s.name for s in recording_exporter.spans] == ["from-parent"]
        finally:
            processor.shutdown()
