# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""BaggageEnricher - copies the active baggage onto every starting span.

Why this is a span processor and not middleware:
- Baggage is process-local context; only the SDK can read it at span start.
- Auto-instrumented spans never pass through application code.
- The collector only sees spans after they are exported.

The enricher must be the first stage of the chain so every later stage
(and the exporter) sees the ``baggage.*`` attributes.
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import baggage, context
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor
from opentelemetry.trace import Span

from satchel.tracking.metrics import record_attributes_truncated

logger = logging.getLogger(__name__)

ATTRIBUTE_PREFIX = "baggage."


def _dropped_attributes(span: Span) -> Optional[int]:
    dropped = getattr(span, "dropped_attributes", None)
    return dropped if isinstance(dropped, int) else None


class BaggageEnricher(SpanProcessor):
    """Enriches ALL spans with the baggage in effect at span start.

    Each OpenTelemetry baggage entry ``(k, v)`` in the parent context becomes
    the string attribute ``baggage.<k> = str(v)``, whoever set it: satchel,
    ``opentelemetry.baggage`` or the W3C baggage propagator.
    Baggage wins over an attribute of the same name passed to
    ``start_span``: it is the source of record for request-scoped context.

    Args:
        max_attributes: Upper bound on copied entries per span.  ``None``
            (default) copies everything.  When capped, keys are copied in
            sorted order so the same subset survives on every span.
        prefix: Attribute name prefix.

    Entries left out by the cap, and attributes the SDK span attribute limit
    evicts while copying, are counted by
    :func:`~satchel.tracking.metrics.record_attributes_truncated`.
    """

    def __init__(self, max_attributes: Optional[int] = None, prefix: str = ATTRIBUTE_PREFIX) -> None:
        if max_attributes is not None and max_attributes < 0:
            raise ValueError("max_attributes must be >= 0 or None")
        self._max_attributes = max_attributes
        self._prefix = prefix

    def on_start(
        self,
        span: Span,
        parent_context: Optional[context.Context] = None,
    ) -> None:
        """Called when a span starts - copy baggage entries to span attributes."""
        try:
            ctx = parent_context if parent_context is not None else context.get_current()
            entries = baggage.get_all(ctx)
        except Exception:
            logger.debug("Could not read baggage for span enrichment", exc_info=True)
            return

        if not entries:
            return

        keys = list(entries)
        if self._max_attributes is not None and len(keys) > self._max_attributes:
            kept = sorted(keys)[: self._max_attributes]
            logger.debug("Baggage has %d entries, copying %d onto span", len(keys), len(kept))
            record_attributes_truncated(len(keys) - len(kept))
            keys = kept

        dropped_before = _dropped_attributes(span)
        for key in keys:
            span.set_attribute(self._prefix + key, str(entries[key]))

        dropped_after = _dropped_attributes(span)
        if dropped_before is not None and dropped_after is not None and dropped_after > dropped_before:
            lost = dropped_after - dropped_before
            logger.debug("Span attribute limit dropped %d attributes while copying baggage", lost)
            record_attributes_truncated(lost)

    def on_end(self, span: ReadableSpan) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True
