# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""FastAPI / Starlette middleware that turns request metadata into baggage.

Every span started while the request is handled (including spans from
auto-instrumented libraries) then carries ``baggage.user_id``,
``baggage.request_id`` and friends via
:class:`~satchel.processors.enricher.BaggageEnricher`.
"""

from __future__ import annotations

import logging
import os
import time
from typing import List, Mapping, Optional

from opentelemetry.context import attach, detach, get_current
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from satchel.exceptions import BaggageSyntaxError
from satchel.models.baggage import Baggage, Entry
from satchel.sdk.context import with_baggage
from satchel.tracking.metrics import record_baggage_entry_dropped

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


def generate_request_id() -> str:
    """Generate a time-ordered request id such as ``req_1760870400123456789_9f2c41ab``.

    Nanosecond wall-clock time keeps ids sortable; 32 random bits from
    ``os.urandom()`` keep two requests in the same nanosecond apart.
    """
    return f"req_{time.time_ns()}_{os.urandom(4).hex()}"


def build_request_baggage(headers: Mapping[str, str], peer: Optional[str]) -> Baggage:
    """Build the request carrier from request headers and the peer address.

    ============================  ===============  ==========================
    Source                        Baggage key      Fallback
    ============================  ===============  ==========================
    ``X-User-ID``                 ``user_id``      omitted if empty
    ``X-Tenant-ID``               ``tenant_id``    omitted if empty
    ``X-Request-ID``              ``request_id``   :func:`generate_request_id`
    ``X-Forwarded-For`` / *peer*  ``client_ip``    always present
    ``User-Agent``                ``user_agent``   omitted if empty
    ============================  ===============  ==========================

    ``client_ip`` holds the ``X-Forwarded-For`` value as sent, the whole hop
    list; only without that header is the peer host used.

    Header names are matched case-insensitively.  An entry that fails
    validation is logged, counted, and left out.

    Raises:
        BaggageSyntaxError: If the carrier cannot be assembled at all.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    entries: List[Entry] = []

    def _add(key: str, value: str) -> None:
        try:
            entries.append(Entry(key, value))
        except BaggageSyntaxError as exc:
            logger.warning("Dropping request baggage entry %r: %s", key, exc)
            record_baggage_entry_dropped(key, type(exc).__name__)

    user_id = lowered.get("x-user-id", "")
    if user_id:
        _add("user_id", user_id)

    tenant_id = lowered.get("x-tenant-id", "")
    if tenant_id:
        _add("tenant_id", tenant_id)

    _add("request_id", lowered.get(REQUEST_ID_HEADER, "") or generate_request_id())

    # the whole hop list, as sent
    forwarded_for = lowered.get("x-forwarded-for", "").strip()
    _add("client_ip", forwarded_for or peer or "")

    user_agent = lowered.get("user-agent", "")
    if user_agent:
        _add("user_agent", user_agent)

    return Baggage(entries)


class BaggageMiddleware(BaseHTTPMiddleware):
    """Starlette middleware installing request baggage for the handler.

    Add it as the outermost middleware so every span of the request sees the
    baggage.

    Example::

        from fastapi import FastAPI
        from satchel.sdk.middleware import BaggageMiddleware

        app = FastAPI()
        app.add_middleware(BaggageMiddleware)

    Args:
        app: The wrapped ASGI application.
        echo_request_id: Copy the request id onto the ``X-Request-ID``
            response header when the handler did not set one.
    """

    def __init__(self, app: object, *, echo_request_id: bool = True) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self.echo_request_id = echo_request_id

    async def dispatch(self, request: Request, call_next: object) -> Response:  # type: ignore[override]
        """Attach request baggage, run the handler, detach."""
        peer = request.client.host if request.client else None
        try:
            bag: Optional[Baggage] = build_request_baggage(request.headers, peer)
        except BaggageSyntaxError as exc:
            logger.warning("Could not build request baggage, continuing without it: %s", exc)
            bag = None

        if bag is None:
            return await call_next(request)  # type: ignore[misc,operator]

        baggage_token = attach(with_baggage(bag, get_current()))
        try:
            response = await call_next(request)  # type: ignore[misc,operator]
        finally:
            detach(baggage_token)

        request_id = bag.get_value("request_id")
        if self.echo_request_id and request_id and REQUEST_ID_HEADER not in response.headers:
            response.headers[REQUEST_ID_HEADER] = request_id

        return response
