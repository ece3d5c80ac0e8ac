# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel Bootstrap - one-switch setup of the baggage annotation pipeline.

:func:`enable` builds, once per process:

1. A :class:`~satchel.sdk.provider.SatchelTracerProvider` with the chain
   ``[BaggageEnricher, *extra processors, BatchExportProcessor]``
2. An OTLP/HTTP span exporter pointed at the configured endpoint
3. W3C TraceContext + W3C Baggage propagators

Usage::

    from satchel import enable, disable
    enable()  # reads OTEL_SERVICE_NAME, OTEL_EXPORTER_OTLP_ENDPOINT, SATCHEL_ACCESS_TOKEN from env
    ...
    disable()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional, Sequence

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import SpanProcessor
    from opentelemetry.sdk.trace.export import SpanExporter

    from satchel.sdk.config import SatchelConfig
    from satchel.sdk.provider import SatchelTracerProvider

logger = logging.getLogger(__name__)

_lock = threading.RLock()
_initialized = False
_current_config: Optional[SatchelConfig] = None
_provider: Optional[SatchelTracerProvider] = None


def enable(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    access_token: Optional[str] = None,
    log_level: str = "INFO",
    config: Optional[SatchelConfig] = None,
    config_file: Optional[str] = None,
    exporter: Optional[SpanExporter] = None,
    processors: Sequence[SpanProcessor] = (),
    set_global: bool = True,
) -> bool:
    """Enable the Satchel pipeline.

    Args:
        service_name: Service name.
        otlp_endpoint: OTLP collector endpoint.
        access_token: Token sent in the access token header.
        log_level: Logging level (default: ``"INFO"``).
        config: Full :class:`SatchelConfig` (overrides individual params).
        config_file: Path to YAML config file.
        exporter: Span exporter to use instead of OTLP/HTTP.
        processors: Extra stages run between the enricher and the batch stage.
        set_global: Register the provider and propagators with OpenTelemetry.

    Returns:
        ``True`` if successfully initialized, ``False`` if already initialized.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    global _initialized, _current_config, _provider

    with _lock:
        if _initialized:
            logger.warning("Satchel already initialized")
            return False

        logging.basicConfig(level=getattr(logging, log_level.upper()))

        from satchel.sdk.config import SatchelConfig as ConfigClass

        if config is not None:
            cfg = config
        elif config_file is not None:
            cfg = ConfigClass.from_yaml(config_file)
        else:
            cfg = ConfigClass.from_file_or_env()

        if service_name is not None:
            cfg.service_name = service_name
        if otlp_endpoint is not None:
            cfg.otlp_endpoint = otlp_endpoint
        if access_token is not None:
            cfg.access_token = access_token
        cfg.validate()

        from opentelemetry.sdk.resources import Resource

        from satchel._version import __version__
        from satchel.processors import BaggageEnricher, BatchExportProcessor
        from satchel.sdk.provider import SatchelTracerProvider

        resource_attrs = {
            "service.name": cfg.service_name,
            "telemetry.sdk.name": "satchel",
            "telemetry.sdk.version": __version__,
        }
        if cfg.service_version:
            resource_attrs["service.version"] = cfg.service_version
        if cfg.deployment_environment:
            resource_attrs["deployment.environment"] = cfg.deployment_environment
        resource = Resource.create(resource_attrs)

        if exporter is None:
            exporter = _create_exporter(cfg)

        batch = BatchExportProcessor(
            exporter,
            max_queue_size=cfg.max_queue_size,  # type: ignore[arg-type]
            schedule_delay_millis=cfg.schedule_delay_millis,  # type: ignore[arg-type]
            export_timeout_millis=cfg.export_timeout_millis,  # type: ignore[arg-type]
            max_export_batch_size=cfg.max_export_batch_size,  # type: ignore[arg-type]
        )
        provider = SatchelTracerProvider(
            [BaggageEnricher(max_attributes=cfg.max_baggage_attributes), *processors, batch],
            resource=resource,
        )

        logger.info(
            "Initializing Satchel: service=%s, endpoint=%s",
            cfg.service_name,
            cfg.traces_endpoint,
        )

        if set_global:
            _install_globals(provider)

        _current_config = cfg
        _provider = provider
        _initialized = True
        logger.info("Satchel tracing initialized")
        return True


def _create_exporter(cfg: SatchelConfig) -> SpanExporter:
    """Build the OTLP/HTTP span exporter for *cfg*."""
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    return OTLPSpanExporter(
        endpoint=cfg.traces_endpoint,
        headers=cfg.exporter_headers,
        timeout=cfg.export_timeout_millis / 1000.0,  # type: ignore[operator]
    )


def _install_globals(provider: SatchelTracerProvider) -> None:
    from opentelemetry.baggage.propagation import W3CBaggagePropagator
    from opentelemetry.propagate import set_global_textmap
    from opentelemetry.propagators.composite import CompositePropagator
    from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

    trace.set_tracer_provider(provider)
    if trace.get_tracer_provider() is not provider:
        logger.warning("A global TracerProvider was already set; use satchel.get_tracer() to reach Satchel's")

    set_global_textmap(
        CompositePropagator(
            [
                TraceContextTextMapPropagator(),
                W3CBaggagePropagator(),
            ]
        )
    )


def is_enabled() -> bool:
    """Check if Satchel is initialized."""
    return _initialized


def get_config() -> Optional[SatchelConfig]:
    """Get the current Satchel configuration."""
    return _current_config


def get_provider() -> Optional[SatchelTracerProvider]:
    """Get the Satchel tracer provider, ``None`` before :func:`enable`."""
    return _provider


def get_tracer(name: str, version: Optional[str] = None) -> trace.Tracer:
    """Return the tracer called *name*.

    Repeated calls with the same arguments return the same tracer.  Before
    :func:`enable` (or after :func:`disable`) this falls back to the global
    OpenTelemetry tracer provider.
    """
    with _lock:
        provider = _provider
    if provider is None:
        return trace.get_tracer(name, version)
    return provider.get_tracer(name, version)


def disable(timeout_millis: int = 30000) -> None:
    """Flush and shut down the pipeline.

    Call on application shutdown for clean exit.

    Raises:
        ShutdownTimeoutError: If queued spans could not be exported within
            *timeout_millis*.  Satchel is disabled regardless.
    """
    global _initialized, _current_config, _provider

    with _lock:
        if not _initialized:
            return
        provider = _provider
        _initialized = False
        _current_config = None
        _provider = None

    if provider is not None:
        provider.shutdown(timeout_millis=timeout_millis)
    logger.info("Satchel shutdown complete")
