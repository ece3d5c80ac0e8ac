# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for Satchel tests."""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import pytest
from opentelemetry import context as otel_context
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter, SpanExportResult
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from satchel.processors.enricher import BaggageEnricher
from satchel.sdk import bootstrap
from satchel.sdk.provider import SatchelTracerProvider


class RecordingExporter(SpanExporter):
    """Span exporter that records batches and can be held at a gate.

    ``entered`` is set whenever ``export`` is called; while ``gate`` is
    clear, ``export`` blocks until it is set.
    """

    def __init__(self, result: SpanExportResult = SpanExportResult.SUCCESS, raises: Optional[Exception] = None):
        self.batches: List[List[ReadableSpan]] = []
        self.result = result
        self.raises = raises
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.gate.set()
        self.shutdown_called = False
        self._lock = threading.Lock()

    @property
    def spans(self) -> List[ReadableSpan]:
        with self._lock:
            return [span for batch in self.batches for span in batch]

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        self.entered.set()
        self.gate.wait()
        if self.raises is not None:
            raise self.raises
        with self._lock:
            self.batches.append(list(spans))
        return self.result

    def shutdown(self) -> None:
        self.shutdown_called = True


@pytest.fixture(autouse=True)
def clean_context():
    """Run every test in an empty OTel context so baggage never leaks between tests."""
    token = otel_context.attach(otel_context.Context())
    yield
    otel_context.detach(token)


@pytest.fixture(autouse=True)
def reset_bootstrap():
    """Drop any pipeline a test enabled."""
    yield
    provider = bootstrap._provider
    bootstrap._initialized = False
    bootstrap._current_config = None
    bootstrap._provider = None
    if provider is not None and not provider.is_shutdown:
        provider.shutdown(timeout_millis=1000)


@pytest.fixture
def memory_exporter():
    """In-memory span exporter behind a SimpleSpanProcessor."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(memory_exporter):
    """Provider with the enricher first and synchronous export."""
    provider = SatchelTracerProvider([BaggageEnricher(), SimpleSpanProcessor(memory_exporter)])
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(tracer_provider):
    """Get a tracer instance."""
    return tracer_provider.get_tracer("test-tracer")


@pytest.fixture
def recording_exporter():
    exporter = RecordingExporter()
    yield exporter
    exporter.gate.set()
