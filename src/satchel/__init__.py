# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel - copies request baggage onto every OpenTelemetry span.

Quick Start::

    from fastapi import FastAPI
    from satchel import enable, start_span, end_span
    from satchel.sdk.middleware import BaggageMiddleware

    enable()  # reads OTEL_SERVICE_NAME, OTEL_EXPORTER_OTLP_ENDPOINT env vars

    app = FastAPI()
    app.add_middleware(BaggageMiddleware)

    @app.post("/orders")
    async def create_order():
        ctx, span = start_span("process_order")  # carries baggage.user_id, baggage.request_id, ...
        try:
            ...
        finally:
            end_span(span)
"""

from __future__ import annotations

from satchel._version import __version__

# Errors
from satchel.exceptions import (
    BaggageSyntaxError,
    ConfigError,
    DuplicateKeyError,
    ExporterError,
    InvalidKeyError,
    InvalidValueError,
    LimitExceededError,
    SatchelError,
    ShutdownTimeoutError,
)

# Baggage carrier
from satchel.models.baggage import EMPTY_BAGGAGE, Baggage, Entry, Property, parse, serialize

# Span processors
from satchel.processors import BaggageEnricher, BatchExportProcessor, SpanProcessorChain

# Bootstrap
from satchel.sdk.bootstrap import disable, enable, get_provider, get_tracer, is_enabled

# Configuration
from satchel.sdk.config import SatchelConfig

# Context helpers
from satchel.sdk.context import baggage_of, get_baggage, set_baggage, use_baggage, with_baggage
from satchel.sdk.provider import SatchelTracerProvider

# Span helpers
from satchel.sdk.span_helpers import add_event, end_span, set_attributes, set_status, span_scope, start_span

__all__ = [
    "__version__",
    # Bootstrap
    "enable",
    "disable",
    "is_enabled",
    "get_provider",
    "get_tracer",
    # Configuration
    "SatchelConfig",
    # Baggage
    "Baggage",
    "Entry",
    "Property",
    "EMPTY_BAGGAGE",
    "parse",
    "serialize",
    # Context
    "with_baggage",
    "baggage_of",
    "use_baggage",
    "set_baggage",
    "get_baggage",
    # Spans
    "start_span",
    "set_attributes",
    "add_event",
    "set_status",
    "end_span",
    "span_scope",
    # Pipeline
    "SatchelTracerProvider",
    "SpanProcessorChain",
    "BaggageEnricher",
    "BatchExportProcessor",
    # Errors
    "SatchelError",
    "ConfigError",
    "BaggageSyntaxError",
    "InvalidKeyError",
    "InvalidValueError",
    "DuplicateKeyError",
    "LimitExceededError",
    "ExporterError",
    "ShutdownTimeoutError",
]
