# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""SatchelTracerProvider - an SDK tracer provider with a fixed processor chain."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanLimits, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.sampling import ALWAYS_ON, Sampler

from satchel.processors.chain import SpanProcessorChain

logger = logging.getLogger(__name__)


class SatchelTracerProvider(TracerProvider):
    """Tracer provider whose processor chain is fixed at construction.

    Differences from the SDK ``TracerProvider``:

    - ``add_span_processor`` is rejected; pass every stage to the constructor.
    - ``get_tracer`` returns the same tracer for the same name and version.
    - ``shutdown`` takes a budget, is idempotent, and raises
      :class:`~satchel.exceptions.ShutdownTimeoutError` on overrun.
    - No atexit hook; call :meth:`shutdown` (or ``satchel.disable()``).

    Example::

        >>> provider = SatchelTracerProvider(
        ...     [BaggageEnricher(), BatchExportProcessor(exporter)],
        ...     resource=Resource.create({"service.name": "orders"}),
        ... )
        >>> tracer = provider.get_tracer("order-service")
    """

    def __init__(
        self,
        processors: Sequence[SpanProcessor] = (),
        resource: Optional[Resource] = None,
        sampler: Sampler = ALWAYS_ON,
        span_limits: Optional[SpanLimits] = None,
    ) -> None:
        self._chain = SpanProcessorChain(processors)
        super().__init__(
            sampler=sampler,
            resource=resource,
            shutdown_on_exit=False,
            active_span_processor=self._chain,
            span_limits=span_limits,
        )
        self._satchel_tracers: Dict[Tuple[str, str], trace.Tracer] = {}
        self._satchel_tracers_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @property
    def processors(self) -> Tuple[SpanProcessor, ...]:
        return self._chain.processors

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def add_span_processor(self, span_processor: SpanProcessor) -> None:
        raise RuntimeError("SatchelTracerProvider has a fixed processor chain; pass processors to the constructor")

    def get_tracer(  # type: ignore[override]
        self,
        instrumenting_module_name: str,
        instrumenting_library_version: Optional[str] = None,
        *args: object,
        **kwargs: object,
    ) -> trace.Tracer:
        key = (instrumenting_module_name or "", instrumenting_library_version or "")
        with self._satchel_tracers_lock:
            tracer = self._satchel_tracers.get(key)
            if tracer is None:
                tracer = super().get_tracer(instrumenting_module_name, instrumenting_library_version, *args, **kwargs)
                self._satchel_tracers[key] = tracer
            return tracer

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._chain.force_flush(timeout_millis)

    def shutdown(self, timeout_millis: int = 30000) -> None:  # type: ignore[override]
        """Drain and stop every processor.  Later calls are no-ops.

        Raises:
            ShutdownTimeoutError: If the chain did not finish within
                *timeout_millis*.  The provider is shut down regardless.
        """
        with self._shutdown_lock:
            if self._is_shutdown:
                logger.debug("Tracer provider already shut down")
                return
            self._is_shutdown = True
        self._chain.shutdown(timeout_millis)
