# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Pipeline counters - what the pipeline silently dropped.

- ``satchel.spans.dropped`` (counter): ended spans rejected by a full export queue
- ``satchel.baggage.entries_dropped`` (counter): ingress entries that failed validation
- ``satchel.baggage.attributes_truncated`` (counter): baggage entries not copied
  onto a span because of the enricher cap or the span attribute limit
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import metrics
from opentelemetry.metrics import Counter

logger = logging.getLogger(__name__)

_SDK_METER_NAME = "satchel_sdk"

meter = metrics.get_meter(_SDK_METER_NAME)

_spans_dropped_counter: Optional[Counter] = None
_entries_dropped_counter: Optional[Counter] = None
_attributes_truncated_counter: Optional[Counter] = None


def _get_spans_dropped_counter() -> Counter:
    global _spans_dropped_counter
    if _spans_dropped_counter is None:
        _spans_dropped_counter = meter.create_counter(
            name="satchel.spans.dropped",
            description="Ended spans dropped because the export queue was full",
            unit="1",
        )
    return _spans_dropped_counter


def _get_entries_dropped_counter() -> Counter:
    global _entries_dropped_counter
    if _entries_dropped_counter is None:
        _entries_dropped_counter = meter.create_counter(
            name="satchel.baggage.entries_dropped",
            description="Request baggage entries dropped because they were invalid",
            unit="1",
        )
    return _entries_dropped_counter


def _get_attributes_truncated_counter() -> Counter:
    global _attributes_truncated_counter
    if _attributes_truncated_counter is None:
        _attributes_truncated_counter = meter.create_counter(
            name="satchel.baggage.attributes_truncated",
            description="Baggage entries not copied onto a span because of the attribute cap or the span attribute limit",
            unit="1",
        )
    return _attributes_truncated_counter


def record_spans_dropped(count: int = 1) -> None:
    try:
        _get_spans_dropped_counter().add(count)
    except Exception as exc:
        logger.debug("Failed to record spans.dropped metric: %s", exc)


def record_baggage_entry_dropped(key: str, reason: str) -> None:
    """Record an ingress baggage entry that failed validation.

    Args:
        key: Baggage key the entry was meant for (low cardinality).
        reason: Exception class name.
    """
    try:
        _get_entries_dropped_counter().add(1, {"baggage.key": key, "reason": reason})
    except Exception as exc:
        logger.debug("Failed to record baggage.entries_dropped metric: %s", exc)


def record_attributes_truncated(count: int) -> None:
    try:
        _get_attributes_truncated_counter().add(count)
    except Exception as exc:
        logger.debug("Failed to record baggage.attributes_truncated metric: %s", exc)
