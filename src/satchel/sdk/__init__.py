# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel SDK core components."""

from __future__ import annotations

from satchel.sdk.bootstrap import disable, enable, get_config, get_provider, get_tracer, is_enabled
from satchel.sdk.config import SatchelConfig
from satchel.sdk.context import (
    baggage_of,
    get_baggage,
    get_current_span,
    set_baggage,
    use_baggage,
    with_baggage,
)
from satchel.sdk.provider import SatchelTracerProvider
from satchel.sdk.span_helpers import add_event, end_span, set_attributes, set_status, span_scope, start_span

__all__ = [
    "SatchelConfig",
    "SatchelTracerProvider",
    "add_event",
    "baggage_of",
    "disable",
    "enable",
    "end_span",
    "get_baggage",
    "get_config",
    "get_current_span",
    "get_provider",
    "get_tracer",
    "is_enabled",
    "set_attributes",
    "set_baggage",
    "set_status",
    "span_scope",
    "start_span",
    "use_baggage",
    "with_baggage",
]
