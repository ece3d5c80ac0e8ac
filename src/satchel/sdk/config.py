# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Configuration for Satchel.

Values are read once, when :class:`SatchelConfig` is built, and validated
there: a bad endpoint or a malformed number raises
:class:`~satchel.exceptions.ConfigError` at startup and never later.

Configuration precedence (highest to lowest):
1. Code arguments (explicit values passed to SatchelConfig)
2. Environment variables (SATCHEL_*, OTEL_*)
3. YAML config file (satchel.yaml or specified path)
4. Built-in defaults
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from satchel.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4318"
DEFAULT_OTLP_PATH = "/v1/traces"
DEFAULT_ACCESS_TOKEN_HEADER = "signoz-access-token"


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class SatchelConfig:
    """Configuration for the Satchel tracing pipeline.

    Example::

        >>> config = SatchelConfig(
        ...     service_name="order-service",
        ...     otlp_endpoint="https://ingest.us.signoz.cloud:443",
        ...     access_token="...",
        ... )

        >>> # Or load from YAML
        >>> config = SatchelConfig.from_yaml("config/satchel.yaml")

    Raises:
        ConfigError: If the endpoint is not an http(s) URL, or a numeric
            setting is malformed or out of range.
    """

    # Service identification
    service_name: Optional[str] = None
    service_version: Optional[str] = None
    deployment_environment: Optional[str] = None

    # OTLP exporter configuration
    otlp_endpoint: Optional[str] = None
    otlp_path: Optional[str] = None
    access_token: Optional[str] = None
    access_token_header: Optional[str] = None
    otlp_headers: Optional[Dict[str, str]] = None

    # Span export configuration
    max_queue_size: Optional[int] = None
    schedule_delay_millis: Optional[int] = None
    export_timeout_millis: Optional[int] = None
    max_export_batch_size: Optional[int] = None

    # Baggage enrichment (None = copy every entry)
    max_baggage_attributes: Optional[int] = None

    # Config file path (for tracking where config was loaded from)
    _config_file: Optional[str] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Apply environment variable defaults, then validate."""
        if self.service_name is None:
            self.service_name = os.getenv("OTEL_SERVICE_NAME", "unknown_service")

        if self.service_version is None:
            self.service_version = os.getenv("OTEL_SERVICE_VERSION")

        if self.deployment_environment is None:
            self.deployment_environment = os.getenv("OTEL_DEPLOYMENT_ENVIRONMENT")

        if self.otlp_endpoint is None:
            self.otlp_endpoint = (
                os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
                or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
                or DEFAULT_OTLP_ENDPOINT
            )

        if self.otlp_path is None:
            self.otlp_path = os.getenv("SATCHEL_OTLP_PATH", DEFAULT_OTLP_PATH)

        if self.access_token is None:
            self.access_token = os.getenv("SATCHEL_ACCESS_TOKEN")

        if self.access_token_header is None:
            self.access_token_header = os.getenv("SATCHEL_ACCESS_TOKEN_HEADER", DEFAULT_ACCESS_TOKEN_HEADER)

        if self.max_queue_size is None:
            self.max_queue_size = _env_int("OTEL_BSP_MAX_QUEUE_SIZE", 2048)

        if self.schedule_delay_millis is None:
            self.schedule_delay_millis = _env_int("OTEL_BSP_SCHEDULE_DELAY", 5000)

        if self.export_timeout_millis is None:
            self.export_timeout_millis = _env_int("OTEL_BSP_EXPORT_TIMEOUT", 30000)

        if self.max_export_batch_size is None:
            self.max_export_batch_size = _env_int("OTEL_BSP_MAX_EXPORT_BATCH_SIZE", 512)

        if self.max_baggage_attributes is None:
            self.max_baggage_attributes = _env_int("SATCHEL_MAX_BAGGAGE_ATTRIBUTES")

        self.validate()

    # ------------------------------------------------------------------
    # Validation and derived values
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise :class:`ConfigError` for an unusable configuration."""
        parsed = urlparse(self.otlp_endpoint or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Invalid OTLP endpoint {self.otlp_endpoint!r}: expected an http(s) URL")

        if self.otlp_path and not self.otlp_path.startswith("/"):
            raise ConfigError(f"OTLP path must start with '/', got {self.otlp_path!r}")

        for name in ("max_queue_size", "schedule_delay_millis", "export_timeout_millis", "max_export_batch_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")

        if self.max_export_batch_size > self.max_queue_size:  # type: ignore[operator]
            raise ConfigError(
                f"max_export_batch_size ({self.max_export_batch_size}) must not exceed "
                f"max_queue_size ({self.max_queue_size})"
            )

        if self.max_baggage_attributes is not None and (
            not isinstance(self.max_baggage_attributes, int) or self.max_baggage_attributes < 0
        ):
            raise ConfigError(f"max_baggage_attributes must be >= 0, got {self.max_baggage_attributes!r}")

    @property
    def traces_endpoint(self) -> str:
        """Full OTLP traces URL.

        An endpoint that already carries a path is used as-is; a bare
        ``scheme://host:port`` gets :attr:`otlp_path` appended.
        """
        endpoint = self.otlp_endpoint or DEFAULT_OTLP_ENDPOINT
        if urlparse(endpoint).path not in ("", "/"):
            return endpoint
        return f"{endpoint.rstrip('/')}{self.otlp_path or ''}"

    @property
    def exporter_headers(self) -> Dict[str, str]:
        headers = dict(self.otlp_headers or {})
        if self.access_token and self.access_token_header:
            headers[self.access_token_header] = self.access_token
        return headers

    # ------------------------------------------------------------------
    # YAML loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> SatchelConfig:
        """Load configuration from a YAML file.

        Supports environment variable interpolation using ``${VAR_NAME}`` syntax.

        Args:
            path: Path to YAML config file.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ConfigError: If YAML is malformed or a value is invalid.
        """
        if path is None:
            raise FileNotFoundError("No config file path provided")

        resolved = Path(path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")

        import yaml

        with open(resolved) as fh:
            raw_content = fh.read()

        content = _interpolate_env_vars(raw_content)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {resolved}: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {resolved}")

        return cls._from_dict(data, config_file=str(resolved))

    @classmethod
    def from_file_or_env(cls, path: Optional[str] = None) -> SatchelConfig:
        """Load config from file if exists, otherwise use environment variables.

        Search order:
        1. Explicit *path* argument
        2. ``SATCHEL_CONFIG_FILE`` env var
        3. ``./satchel.yaml``
        4. ``./config/satchel.yaml``
        5. Falls back to env-only config
        """
        search_paths: List[Path] = []

        if path:
            search_paths.append(Path(path))

        env_path = os.getenv("SATCHEL_CONFIG_FILE")
        if env_path:
            search_paths.append(Path(env_path))

        search_paths.extend(
            [
                Path("satchel.yaml"),
                Path("satchel.yml"),
                Path("config/satchel.yaml"),
                Path("config/satchel.yml"),
            ]
        )

        for candidate in search_paths:
            if candidate.exists():
                logger.info("Loading config from: %s", candidate)
                return cls.from_yaml(str(candidate))

        logger.debug("No config file found, using environment variables only")
        return cls()

    @classmethod
    def _from_dict(
        cls,
        data: Dict[str, Any],
        config_file: Optional[str] = None,
    ) -> SatchelConfig:
        """Create config from dictionary (parsed YAML)."""
        service = data.get("service") or {}
        otlp = data.get("otlp") or {}
        export = data.get("export") or {}
        baggage = data.get("baggage") or {}

        return cls(
            service_name=service.get("name"),
            service_version=service.get("version"),
            deployment_environment=service.get("environment"),
            otlp_endpoint=otlp.get("endpoint"),
            otlp_path=otlp.get("path"),
            access_token=otlp.get("access_token"),
            access_token_header=otlp.get("access_token_header"),
            otlp_headers=otlp.get("headers"),
            max_queue_size=export.get("queue_size"),
            schedule_delay_millis=export.get("delay_ms"),
            export_timeout_millis=export.get("timeout_ms"),
            max_export_batch_size=export.get("batch_size"),
            max_baggage_attributes=baggage.get("max_attributes"),
            _config_file=config_file,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (the access token is masked)."""
        return {
            "service": {
                "name": self.service_name,
                "version": self.service_version,
                "environment": self.deployment_environment,
            },
            "otlp": {
                "endpoint": self.otlp_endpoint,
                "path": self.otlp_path,
                "access_token": "***" if self.access_token else None,
                "access_token_header": self.access_token_header,
                "headers": self.otlp_headers,
            },
            "export": {
                "queue_size": self.max_queue_size,
                "delay_ms": self.schedule_delay_millis,
                "timeout_ms": self.export_timeout_millis,
                "batch_size": self.max_export_batch_size,
            },
            "baggage": {
                "max_attributes": self.max_baggage_attributes,
            },
        }


def _interpolate_env_vars(content: str) -> str:
    """Interpolate ``${VAR_NAME}`` and ``${VAR_NAME:-default}`` in *content*."""
    pattern = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

    def _replace(match: re.Match) -> str:  # type: ignore[type-arg]
        var_name = match.group(1)
        default = match.group(2)
        value = os.getenv(var_name)
        if value is not None:
            return value
        if default is not None:
            return default
        return match.group(0)

    return pattern.sub(_replace, content)
