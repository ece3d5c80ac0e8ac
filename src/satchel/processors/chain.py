# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""SpanProcessorChain - the ordered, fault-isolated list of span processors.

The chain is fixed when it is built.  Each stage is invoked directly, in
order; a stage that raises is logged and skipped so the remaining stages
still run and application code never sees the exception.
"""

from __future__ import annotations

import inspect
import logging
from time import monotonic_ns
from typing import FrozenSet, Optional, Sequence, Tuple

from opentelemetry import context as context_api
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, SynchronousMultiSpanProcessor

from satchel.exceptions import ShutdownTimeoutError

logger = logging.getLogger(__name__)


def _accepts_timeout(processor: SpanProcessor) -> bool:
    try:
        params = inspect.signature(processor.shutdown).parameters
    except (TypeError, ValueError):
        return False
    return "timeout_millis" in params


class SpanProcessorChain(SynchronousMultiSpanProcessor):
    """Forwards span events to a fixed sequence of processors.

    Args:
        processors: Stages in invocation order.  Put
            :class:`~satchel.processors.enricher.BaggageEnricher` first.
    """

    def __init__(self, processors: Sequence[SpanProcessor] = ()) -> None:
        super().__init__()
        self._span_processors = tuple(processors)
        self._timeout_aware: FrozenSet[int] = frozenset(
            id(sp) for sp in self._span_processors if _accepts_timeout(sp)
        )

    @property
    def processors(self) -> Tuple[SpanProcessor, ...]:
        return self._span_processors

    def add_span_processor(self, span_processor: SpanProcessor) -> None:
        raise RuntimeError("SpanProcessorChain is fixed at construction; pass all processors up front")

    def on_start(
        self,
        span: Span,
        parent_context: Optional[context_api.Context] = None,
    ) -> None:
        for sp in self._span_processors:
            try:
                sp.on_start(span, parent_context=parent_context)
            except Exception:
                logger.warning("Span processor %r failed in on_start", sp, exc_info=True)

    def on_end(self, span: ReadableSpan) -> None:
        for sp in self._span_processors:
            try:
                sp.on_end(span)
            except Exception:
                logger.warning("Span processor %r failed in on_end", sp, exc_info=True)

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Flush every stage in order within one overall budget.

        Returns:
            ``True`` if all stages flushed in time, ``False`` otherwise.
            Stages reached after the budget is spent are skipped.
        """
        deadline_ns = monotonic_ns() + timeout_millis * 1_000_000
        ok = True
        for sp in self._span_processors:
            remaining_ns = deadline_ns - monotonic_ns()
            if remaining_ns <= 0:
                logger.warning("force_flush budget of %d ms exhausted before %r", timeout_millis, sp)
                return False
            try:
                if not sp.force_flush(remaining_ns // 1_000_000):
                    ok = False
            except Exception:
                logger.warning("Span processor %r failed in force_flush", sp, exc_info=True)
                ok = False
        return ok

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """Shut down every stage in order within one overall budget.

        Every stage is visited even if an earlier one fails.  Errors other
        than timeouts are logged; the first at ERROR, the rest at WARNING.

        Raises:
            ShutdownTimeoutError: If a stage timed out.
        """
        deadline_ns = monotonic_ns() + timeout_millis * 1_000_000
        timed_out = False
        reported = False
        for sp in self._span_processors:
            remaining_millis = max(0, (deadline_ns - monotonic_ns()) // 1_000_000)
            try:
                if id(sp) in self._timeout_aware:
                    sp.shutdown(timeout_millis=remaining_millis)
                else:
                    sp.shutdown()
            except ShutdownTimeoutError as exc:
                logger.warning("Span processor %r did not shut down in time: %s", sp, exc)
                timed_out = True
            except Exception:
                if not reported:
                    logger.error("Span processor %r failed in shutdown", sp, exc_info=True)
                    reported = True
                else:
                    logger.warning("Span processor %r failed in shutdown", sp, exc_info=True)

        if timed_out:
            raise ShutdownTimeoutError(f"Span processors did not shut down within {timeout_millis} ms")
