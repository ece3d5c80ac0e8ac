# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""BatchExportProcessor - bounded queue of ended spans drained by a worker thread.

The queue is the only shared mutable state of the pipeline.  ``on_end`` never
blocks: when the queue is full the span is dropped and counted.  A daemon
worker exports a batch when the queue holds ``max_export_batch_size`` spans,
when the oldest queued span is ``schedule_delay_millis`` old, on flush, and on
shutdown.  A failed export is logged and the batch discarded; retrying is the
exporter's job.
"""

from __future__ import annotations

import logging
import os
import threading
import weakref
from collections import deque
from time import monotonic
from typing import Deque, List, Optional, Tuple

from opentelemetry.context import (
    _SUPPRESS_INSTRUMENTATION_KEY,
    Context,
    attach,
    create_key,
    detach,
    get_value,
    set_value,
)
from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult

from satchel.exceptions import ConfigError, ExporterError, ShutdownTimeoutError
from satchel.tracking.metrics import record_spans_dropped

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 2048
DEFAULT_SCHEDULE_DELAY_MILLIS = 5000
DEFAULT_EXPORT_TIMEOUT_MILLIS = 30000
DEFAULT_MAX_EXPORT_BATCH_SIZE = 512

_DROP_LOG_INTERVAL_SECONDS = 10.0

_EXPORT_DEADLINE_KEY = create_key("satchel-export-deadline")


def export_deadline(context: Optional[Context] = None) -> Optional[float]:
    """Return the ``time.monotonic()`` deadline of the export in progress.

    Exporters called by :class:`BatchExportProcessor` can use it to bound
    their transport call.  ``None`` outside an export.
    """
    return get_value(_EXPORT_DEADLINE_KEY, context=context)  # type: ignore[return-value]


class BatchExportProcessor(SpanProcessor):
    """Buffers ended spans and hands them to *span_exporter* in batches.

    Args:
        span_exporter: Destination of finished spans.
        max_queue_size: Bound on queued spans; excess spans are dropped.
        schedule_delay_millis: Maximum age of a queued span before export.
        export_timeout_millis: Deadline of a single export call, and the
            default shutdown budget.
        max_export_batch_size: Maximum spans per export call.

    Raises:
        ConfigError: If a parameter is out of range.
    """

    def __init__(
        self,
        span_exporter: SpanExporter,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        schedule_delay_millis: float = DEFAULT_SCHEDULE_DELAY_MILLIS,
        export_timeout_millis: float = DEFAULT_EXPORT_TIMEOUT_MILLIS,
        max_export_batch_size: int = DEFAULT_MAX_EXPORT_BATCH_SIZE,
    ) -> None:
        if max_queue_size <= 0:
            raise ConfigError(f"max_queue_size must be positive, got {max_queue_size}")
        if schedule_delay_millis <= 0:
            raise ConfigError(f"schedule_delay_millis must be positive, got {schedule_delay_millis}")
        if export_timeout_millis <= 0:
            raise ConfigError(f"export_timeout_millis must be positive, got {export_timeout_millis}")
        if max_export_batch_size <= 0:
            raise ConfigError(f"max_export_batch_size must be positive, got {max_export_batch_size}")
        if max_export_batch_size > max_queue_size:
            raise ConfigError(
                f"max_export_batch_size ({max_export_batch_size}) must not exceed max_queue_size ({max_queue_size})"
            )

        self._exporter = span_exporter
        self._max_queue_size = max_queue_size
        self._schedule_delay = schedule_delay_millis / 1000.0
        self._export_timeout = export_timeout_millis / 1000.0
        self._max_export_batch_size = max_export_batch_size

        self._condition = threading.Condition(threading.Lock())
        self._queue: Deque[Tuple[float, ReadableSpan]] = deque()
        self._flush_requests: List[threading.Event] = []
        self._shutdown = False
        self._shutdown_deadline: Optional[float] = None
        self._in_flight = 0
        self._dropped_spans = 0
        self._exported_spans = 0
        self._last_drop_log: Optional[float] = None

        self._worker = self._start_worker()

        if hasattr(os, "register_at_fork"):
            weak_reinit = weakref.WeakMethod(self._at_fork_reinit)

            def _after_in_child() -> None:
                reinit = weak_reinit()
                if reinit is not None:
                    reinit()

            os.register_at_fork(after_in_child=_after_in_child)
        self._pid = os.getpid()

    def _start_worker(self) -> threading.Thread:
        worker = threading.Thread(
            name="satchel.BatchExportProcessor",
            target=self._worker_loop,
            daemon=True,
        )
        worker.start()
        return worker

    def _at_fork_reinit(self) -> None:
        # Only the forking thread survives in the child; queued spans stay with the parent.
        self._condition = threading.Condition(threading.Lock())
        self._queue.clear()
        self._flush_requests = []
        self._in_flight = 0
        self._last_drop_log = None
        self._pid = os.getpid()
        if self._shutdown:
            return
        self._worker = self._start_worker()
        logger.debug("Restarted batch export worker in forked process %d", self._pid)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    @property
    def dropped_spans(self) -> int:
        """Spans rejected because the queue was full."""
        with self._condition:
            return self._dropped_spans

    @property
    def exported_spans(self) -> int:
        """Spans the exporter accepted."""
        with self._condition:
            return self._exported_spans

    @property
    def queue_length(self) -> int:
        with self._condition:
            return len(self._queue)

    # ------------------------------------------------------------------
    # SpanProcessor
    # ------------------------------------------------------------------

    def on_start(self, span: object, parent_context: Optional[Context] = None) -> None:
        pass

    def on_end(self, span: ReadableSpan) -> None:
        span_context = span.context
        if span_context is not None and not span_context.trace_flags.sampled:
            return

        dropped = False
        log_drop = False
        with self._condition:
            if self._shutdown:
                logger.debug("Span %r ended after shutdown, dropping it", span.name)
                return
            if len(self._queue) >= self._max_queue_size:
                self._dropped_spans += 1
                dropped = True
                now = monotonic()
                if self._last_drop_log is None or now - self._last_drop_log >= _DROP_LOG_INTERVAL_SECONDS:
                    self._last_drop_log = now
                    log_drop = True
            else:
                self._queue.append((monotonic(), span))
                queued = len(self._queue)
                if queued == 1 or queued >= self._max_export_batch_size:
                    self._condition.notify()
            total_dropped = self._dropped_spans

        if dropped:
            record_spans_dropped()
            if log_drop:
                logger.warning(
                    "Export queue is full (%d spans), dropping spans; %d dropped so far",
                    self._max_queue_size,
                    total_dropped,
                )

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Export every span queued before this call.

        Returns:
            ``True`` if the worker drained the queue within *timeout_millis*.
        """
        done = threading.Event()
        with self._condition:
            if self._shutdown:
                return not self._queue
            self._flush_requests.append(done)
            self._condition.notify()
        flushed = done.wait(timeout_millis / 1000.0)
        if not flushed:
            logger.warning("force_flush timed out after %d ms", timeout_millis)
        return flushed

    def shutdown(self, timeout_millis: Optional[float] = None) -> None:
        """Drain the queue, stop the worker and shut the exporter down.

        Args:
            timeout_millis: Overall budget; defaults to ``export_timeout_millis``.

        Raises:
            ShutdownTimeoutError: If spans were still queued or being exported
                when the budget ran out.  The processor is shut down anyway.
        """
        budget = self._export_timeout if timeout_millis is None else timeout_millis / 1000.0
        with self._condition:
            if self._shutdown:
                return
            self._shutdown = True
            self._shutdown_deadline = monotonic() + budget
            self._condition.notify_all()

        self._worker.join(max(0.0, self._shutdown_deadline - monotonic()))

        with self._condition:
            leftover = len(self._queue)
            in_flight = self._in_flight

        try:
            self._exporter.shutdown()
        except Exception:
            logger.warning("Span exporter failed to shut down", exc_info=True)

        if leftover or in_flight:
            logger.warning(
                "Shutdown deadline of %.0f ms reached with %d spans queued and %d being exported",
                budget * 1000,
                leftover,
                in_flight,
            )
            raise ShutdownTimeoutError(f"Batch export did not drain within {budget * 1000:.0f} ms")

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _ready_locked(self) -> bool:
        if self._shutdown or self._flush_requests:
            return True
        if len(self._queue) >= self._max_export_batch_size:
            return True
        return bool(self._queue) and monotonic() - self._queue[0][0] >= self._schedule_delay

    def _wait_timeout_locked(self) -> Optional[float]:
        if not self._queue:
            return None
        return max(0.0, self._schedule_delay - (monotonic() - self._queue[0][0]))

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                while not self._ready_locked():
                    self._condition.wait(self._wait_timeout_locked())
                shutting_down = self._shutdown
                flush_requests = self._flush_requests
                self._flush_requests = []

            if shutting_down:
                self._drain(self._shutdown_deadline)
                for done in flush_requests:
                    done.set()
                logger.debug("Batch export worker stopped")
                return

            if flush_requests:
                self._drain(None)
                for done in flush_requests:
                    done.set()
            else:
                self._export_batch(self._take_batch(), None)

    def _take_batch(self) -> List[ReadableSpan]:
        with self._condition:
            count = min(len(self._queue), self._max_export_batch_size)
            batch = [self._queue.popleft()[1] for _ in range(count)]
            self._in_flight += count
            return batch

    def _drain(self, deadline: Optional[float]) -> None:
        while deadline is None or monotonic() < deadline:
            batch = self._take_batch()
            if not batch:
                return
            self._export_batch(batch, deadline)

    def _export_batch(self, batch: List[ReadableSpan], deadline: Optional[float]) -> None:
        if not batch:
            return

        export_deadline_at = monotonic() + self._export_timeout
        if deadline is not None:
            export_deadline_at = min(export_deadline_at, deadline)

        ctx = set_value(_SUPPRESS_INSTRUMENTATION_KEY, True)
        ctx = set_value(_EXPORT_DEADLINE_KEY, export_deadline_at, ctx)
        token = attach(ctx)
        exported = 0
        try:
            result = self._exporter.export(batch)
            if result is SpanExportResult.SUCCESS:
                exported = len(batch)
            else:
                logger.warning("Span exporter returned %s, discarding batch of %d spans", result, len(batch))
        except ExporterError as exc:
            logger.warning("Span exporter failed, discarding batch of %d spans: %s", len(batch), exc)
        except Exception:
            logger.exception("Unexpected error exporting batch of %d spans", len(batch))
        finally:
            detach(token)
            with self._condition:
                self._in_flight -= len(batch)
                self._exported_spans += exported
