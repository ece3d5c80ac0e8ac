# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Context and baggage helpers for Satchel.

The active baggage is the OpenTelemetry baggage of the
:class:`~opentelemetry.context.Context`, the same slot
``opentelemetry.baggage`` and the W3C baggage propagator use.  Baggage set by
other libraries or extracted from inbound requests is therefore visible
here, and a :class:`~satchel.models.baggage.Baggage` installed with
:func:`with_baggage` is visible to them.

Entry properties have no place in OpenTelemetry baggage, so the installed
carrier is also kept in a private slot and returned by :func:`baggage_of`
while the OpenTelemetry baggage still matches it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Mapping, Optional

from opentelemetry import baggage as otel_baggage
from opentelemetry import trace
from opentelemetry.context import Context, attach, create_key, detach, get_current, get_value, set_value

from satchel.exceptions import BaggageSyntaxError
from satchel.models.baggage import EMPTY_BAGGAGE, Baggage, Entry

logger = logging.getLogger(__name__)

_CARRIER_KEY = create_key("satchel-baggage")


def with_baggage(baggage: Baggage, context: Optional[Context] = None) -> Context:
    """Return a new context whose baggage is exactly *baggage*.

    Baggage already in the parent context (``context`` or the current one) is
    replaced, not merged.  The parent context is not modified.
    """
    ctx = otel_baggage.clear(context=context)
    for entry in baggage:
        ctx = otel_baggage.set_baggage(entry.key, entry.value, context=ctx)
    return set_value(_CARRIER_KEY, baggage, context=ctx)


def _from_otel(values: Mapping[str, object]) -> Baggage:
    bag = EMPTY_BAGGAGE
    for key, value in values.items():
        try:
            bag = bag.set_member(Entry(key, str(value)))
        except BaggageSyntaxError as exc:
            logger.debug("Ignoring baggage entry %r: %s", key, exc)
    return bag


def baggage_of(context: Optional[Context] = None) -> Baggage:
    """Return the baggage in *context* as a carrier.

    Returns the shared empty carrier when there is none.  OpenTelemetry
    baggage entries that are not valid carrier entries are left out.
    """
    values = otel_baggage.get_all(context=context)
    if not values:
        return EMPTY_BAGGAGE
    carrier = get_value(_CARRIER_KEY, context=context)
    if isinstance(carrier, Baggage) and carrier.to_dict() == dict(values):
        return carrier
    return _from_otel(values)


@contextmanager
def use_baggage(baggage: Baggage) -> Generator[Context, None, None]:
    """Make *baggage* the active carrier for the duration of a ``with`` block.

    Example::

        with use_baggage(Baggage.from_dict({"tenant_id": "acme"})):
            handle_request()
    """
    ctx = with_baggage(baggage, get_current())
    token = attach(ctx)
    try:
        yield ctx
    finally:
        detach(token)


def set_baggage(key: str, value: str) -> object:
    """Set a single baggage entry and attach the new context.

    .. warning::

        Each call pushes a new context.  The returned token **must** be passed
        to ``opentelemetry.context.detach()`` when the scope ends.  For several
        keys build one carrier and use :func:`use_baggage` instead.

    Raises:
        BaggageSyntaxError: If *key* or *value* is not a valid entry.

    Returns:
        Token for detaching the context later.
    """
    ctx = get_current()
    ctx = with_baggage(baggage_of(ctx).set_member(Entry(key, value)), ctx)
    return attach(ctx)


def get_baggage(key: str) -> Optional[str]:
    """Get a baggage value from the current context, ``None`` if unset."""
    value = otel_baggage.get_baggage(key, context=get_current())
    return str(value) if value is not None else None


def get_current_span() -> trace.Span:
    """Get the current active span (non-recording if none is active)."""
    return trace.get_current_span()
