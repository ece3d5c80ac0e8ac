# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Tests for SatchelTracerProvider."""

from __future__ import annotations

import threading
from unittest import mock

import pytest
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from satchel.exceptions import ShutdownTimeoutError
from satchel.processors.batch import BatchExportProcessor
from satchel.processors.enricher import BaggageEnricher
from satchel.sdk.provider import SatchelTracerProvider


class TestSatchelTracerProvider:
    """Tests for the fixed-chain tracer provider."""

    def test_processors_exposed_in_order(self):
        enricher = BaggageEnricher()
        exporter_stage = SimpleSpanProcessor(InMemorySpanExporter())
        provider = SatchelTracerProvider([enricher, exporter_stage])
        assert provider.processors == (enricher, exporter_stage)
        provider.shutdown()

    def test_add_span_processor_rejected(self, tracer_provider):
        with pytest.raises(RuntimeError):
            tracer_provider.add_span_processor(BaggageEnricher())

    def test_resource_applied(self):
        exporter = InMemorySpanExporter()
        provider = SatchelTracerProvider(
            [SimpleSpanProcessor(exporter)],
            resource=Resource.create({"service.name": "orders"}),
        )
        provider.get_tracer("t").start_span("op").end()
        (span,) = exporter.get_finished_spans()
        assert span.resource.attributes["service.name"] == "orders"
        provider.shutdown()

    def test_get_tracer_cached_by_name_and_version(self, tracer_provider):
        first = tracer_provider.get_tracer("orders", "1.0")
        assert tracer_provider.get_tracer("orders", "1.0") is first
        assert tracer_provider.get_tracer("orders", "2.0") is not first
        assert tracer_provider.get_tracer("billing", "1.0") is not first

    def test_get_tracer_concurrent_callers_share_instance(self, tracer_provider):
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(tracer_provider.get_tracer("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(t) for t in results}) == 1

    def test_get_tracer_returns_promptly(self, tracer_provider):
        results = []

        def worker():
            results.append(tracer_provider.get_tracer("orders"))
            results.append(tracer_provider.get_tracer("orders"))

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        thread.join(timeout=3)

        assert not thread.is_alive()
        assert len(results) == 2
        assert results[0] is results[1]

    def test_force_flush_delegates_to_chain(self):
        stage = mock.MagicMock(spec=SpanProcessor)
        stage.force_flush.return_value = True
        provider = SatchelTracerProvider([stage])
        assert provider.force_flush(1000) is True
        stage.force_flush.assert_called_once()
        provider.shutdown()

    def test_shutdown_is_idempotent(self):
        stage = mock.MagicMock(spec=SpanProcessor)
        provider = SatchelTracerProvider([stage])

        provider.shutdown()
        provider.shutdown()

        assert provider.is_shutdown
        stage.shutdown.assert_called_once()

    def test_spans_after_shutdown_not_exported(self):
        exporter = InMemorySpanExporter()
        provider = SatchelTracerProvider([BatchExportProcessor(exporter)])
        tracer = provider.get_tracer("t")
        provider.shutdown()

        tracer.start_span("late").end()

        assert exporter.get_finished_spans() == ()

    def test_shutdown_timeout_propagates(self):
        class _Slow(SpanProcessor):
            def shutdown(self, timeout_millis=30000):
                raise ShutdownTimeoutError("slow")

        provider = SatchelTracerProvider([_Slow()])
        with pytest.raises(ShutdownTimeoutError):
            provider.shutdown(timeout_millis=100)
        assert provider.is_shutdown
        provider.shutdown()
