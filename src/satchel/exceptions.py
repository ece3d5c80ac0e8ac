# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel exceptions.

All exceptions inherit from :class:`SatchelError`.  Only :class:`ConfigError`
(at startup) and :class:`ShutdownTimeoutError` (at teardown) ever reach
application code; everything else is recovered inside the pipeline.
"""

from __future__ import annotations


class SatchelError(Exception):
    """Base exception for all Satchel errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class ConfigError(SatchelError, ValueError):
    """Invalid endpoint or malformed startup parameter."""


class BaggageSyntaxError(SatchelError, ValueError):
    """A baggage entry or carrier could not be built."""


class InvalidKeyError(BaggageSyntaxError):
    """Baggage key is empty or outside the token alphabet."""

    def __init__(self, message: str, *, key: object = None) -> None:
        super().__init__(message)
        self.key = key


class InvalidValueError(BaggageSyntaxError):
    """Baggage value cannot be encoded, or the entry is too large."""

    def __init__(self, message: str, *, key: object = None) -> None:
        super().__init__(message)
        self.key = key


class DuplicateKeyError(BaggageSyntaxError):
    """Two entries passed to one carrier share a key."""

    def __init__(self, message: str, *, key: str = "") -> None:
        super().__init__(message)
        self.key = key


class LimitExceededError(BaggageSyntaxError):
    """Carrier would exceed the entry count or header size limit."""


class ExporterError(SatchelError):
    """Transient transport failure raised by a span exporter."""


class ShutdownTimeoutError(SatchelError, TimeoutError):
    """Shutdown did not complete within its deadline.

    The provider or processor is considered shut down regardless.
    """
