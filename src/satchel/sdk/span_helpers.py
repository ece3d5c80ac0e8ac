# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Helper functions for writing spans.

Thin wrappers over the OpenTelemetry span API with two guarantees: the
context returned by :func:`start_span` carries both the new span and the
caller's baggage, and none of the helpers lets a telemetry error escape into
application code.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional, Sequence, Tuple, Union

from opentelemetry import trace
from opentelemetry.context import Context, attach, detach, get_current
from opentelemetry.trace import Link, Span, SpanKind, Status, StatusCode
from opentelemetry.util.types import Attributes

logger = logging.getLogger(__name__)

_SDK_TRACER_NAME = "satchel_sdk"


def _resolve_tracer(tracer: Optional[trace.Tracer]) -> trace.Tracer:
    if tracer is not None:
        return tracer
    from satchel.sdk.bootstrap import get_tracer

    return get_tracer(_SDK_TRACER_NAME)


def start_span(
    name: str,
    context: Optional[Context] = None,
    *,
    tracer: Optional[trace.Tracer] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    start_time: Optional[int] = None,
    attributes: Attributes = None,
    links: Optional[Sequence[Link]] = None,
) -> Tuple[Context, Span]:
    """Start a span and return it with the context that makes it active.

    The parent is the active span of *context* (the current context when
    omitted); without one a new trace is started.  The processor chain's
    ``on_start`` (and with it baggage enrichment) has run by the time this
    returns.  The returned context is not attached.

    Args:
        name: Span name.
        context: Creation context; defaults to the current context.
        tracer: Tracer to use; defaults to the Satchel SDK tracer.
        kind: Span kind.
        start_time: Start timestamp in nanoseconds since the epoch.
        attributes: Initial attributes.
        links: Links to other spans.

    Returns:
        ``(new_context, span)``.

    Example::

        >>> ctx, span = start_span("process_order")
        >>> try:
        ...     validate_payment(ctx)
        ... finally:
        ...     end_span(span)
    """
    parent = context if context is not None else get_current()
    span = _resolve_tracer(tracer).start_span(
        name,
        context=parent,
        kind=kind,
        attributes=attributes,
        links=links,
        start_time=start_time,
    )
    return trace.set_span_in_context(span, parent), span


def set_attributes(span: Span, attributes: Attributes) -> None:
    """Set several attributes; last write wins, no-op once the span ended."""
    if not attributes:
        return
    try:
        span.set_attributes(attributes)
    except Exception:
        logger.debug("Failed to set attributes on span", exc_info=True)


def add_event(
    span: Span,
    name: str,
    attributes: Attributes = None,
    timestamp: Optional[int] = None,
) -> None:
    try:
        span.add_event(name, attributes=attributes, timestamp=timestamp)
    except Exception:
        logger.debug("Failed to add event %r to span", name, exc_info=True)


def set_status(span: Span, code: Union[StatusCode, str], description: Optional[str] = None) -> None:
    """Set the span status.

    Args:
        span: Target span.
        code: ``StatusCode`` or one of ``"unset"``, ``"ok"``, ``"error"``
            (case-insensitive).
        description: Only kept for ``ERROR``, as the OpenTelemetry API does.

    Raises:
        ValueError: If *code* is not a recognised status code name.
    """
    if isinstance(code, str):
        try:
            code = StatusCode[code.upper()]
        except KeyError:
            raise ValueError(
                f"Invalid status code '{code}'. Must be one of: {', '.join(c.name.lower() for c in StatusCode)}"
            ) from None
    try:
        span.set_status(Status(code, description if code is StatusCode.ERROR else None))
    except Exception:
        logger.debug("Failed to set status on span", exc_info=True)


def end_span(span: Span, end_time: Optional[int] = None) -> None:
    """End *span*.  Ending an already ended span is a no-op."""
    try:
        span.end(end_time=end_time)
    except Exception:
        logger.debug("Failed to end span", exc_info=True)


@contextmanager
def span_scope(
    name: str,
    *,
    tracer: Optional[trace.Tracer] = None,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: Attributes = None,
) -> Generator[Span, None, None]:
    """Start a span, make it current for the block, and end it on exit.

    An exception leaving the block is recorded on the span, the status is
    set to ``ERROR``, and the exception is re-raised.

    Example::

        with span_scope("update_inventory", attributes={"inventory.order_id": order_id}):
            update_inventory(order_id)
    """
    ctx, span = start_span(name, tracer=tracer, kind=kind, attributes=attributes)
    token = attach(ctx)
    try:
        yield span
    except Exception as exc:
        try:
            span.record_exception(exc)
        except Exception:
            logger.debug("Failed to record exception on span", exc_info=True)
        set_status(span, StatusCode.ERROR, f"{type(exc).__name__}: {exc}")
        raise
    finally:
        detach(token)
        end_span(span)
