# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Baggage carrier - the request-scoped key/value set copied onto spans.

A :class:`Baggage` is an immutable set of :class:`Entry` objects with unique
keys.  Every mutator returns a new carrier, so a carrier can be shared between
contexts and threads without copying.

Wire format (W3C Baggage)::

    key1=value1;prop1=p1,key2=value2

Values are percent-encoded for anything outside the baggage-octet alphabet.
Parsing is lenient: a malformed entry is skipped, never fatal.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple
from urllib.parse import quote, unquote

from satchel.exceptions import DuplicateKeyError, InvalidKeyError, InvalidValueError, LimitExceededError

logger = logging.getLogger(__name__)

MAX_ENTRIES = 180
MAX_ENTRY_BYTES = 4096
MAX_HEADER_BYTES = 8192

# RFC 7230 token
_KEY_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

# baggage-octet minus "%", which must always be escaped
_SAFE_OCTETS = "!#$&'()*+-./:<=>?@[]^_`{|}~"


def _check_key(key: object) -> str:
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Baggage key must be a non-empty string, got {key!r}", key=key)
    if not _KEY_PATTERN.match(key):
        raise InvalidKeyError(f"Invalid baggage key {key!r}", key=key)
    return key


def _encode(key: object, value: object) -> str:
    if not isinstance(value, str):
        raise InvalidValueError(f"Baggage value for {key!r} must be a string, got {type(value).__name__}", key=key)
    try:
        return quote(value, safe=_SAFE_OCTETS, errors="strict")
    except UnicodeEncodeError as exc:
        raise InvalidValueError(f"Baggage value for {key!r} cannot be encoded: {exc}", key=key) from exc


@dataclass(frozen=True)
class Property:
    """Secondary key/value pair carried by an entry, preserved but not interpreted."""

    key: str
    value: Optional[str] = None

    def __post_init__(self) -> None:
        _check_key(self.key)
        if self.value is not None:
            _encode(self.key, self.value)

    def serialize(self) -> str:
        if self.value is None:
            return self.key
        return f"{self.key}={_encode(self.key, self.value)}"


@dataclass(frozen=True)
class Entry:
    """A single baggage member.

    Raises:
        InvalidKeyError: If *key* is empty or not a token.
        InvalidValueError: If *value* cannot be percent-encoded or the
            serialized entry exceeds :data:`MAX_ENTRY_BYTES`.
    """

    key: str
    value: str
    properties: Tuple[Property, ...] = field(default=())

    def __post_init__(self) -> None:
        _check_key(self.key)
        _encode(self.key, self.value)
        if not isinstance(self.properties, tuple):
            object.__setattr__(self, "properties", tuple(self.properties))
        for prop in self.properties:
            if not isinstance(prop, Property):
                raise InvalidValueError(f"Baggage property for {self.key!r} must be a Property", key=self.key)
        size = len(self.serialize().encode("ascii"))
        if size > MAX_ENTRY_BYTES:
            raise InvalidValueError(
                f"Baggage entry {self.key!r} is {size} bytes, limit is {MAX_ENTRY_BYTES}",
                key=self.key,
            )

    def serialize(self) -> str:
        parts = [f"{self.key}={_encode(self.key, self.value)}"]
        parts.extend(prop.serialize() for prop in self.properties)
        return ";".join(parts)


def _wire_size(entry: Entry) -> int:
    # serialized entry plus its "," separator
    return len(entry.serialize()) + 1


def _check_limits(entries: Mapping[str, Entry]) -> None:
    if len(entries) > MAX_ENTRIES:
        raise LimitExceededError(f"Baggage has {len(entries)} entries, limit is {MAX_ENTRIES}")
    size = sum(_wire_size(entry) for entry in entries.values()) - 1
    if size > MAX_HEADER_BYTES:
        raise LimitExceededError(f"Baggage serializes to {size} bytes, limit is {MAX_HEADER_BYTES}")


class Baggage:
    """Immutable carrier of baggage entries keyed by entry key.

    A carrier always fits in one header: at most :data:`MAX_ENTRIES` entries
    serializing to at most :data:`MAX_HEADER_BYTES` bytes.

    Example::

        >>> bag = Baggage([Entry("user_id", "user123")])
        >>> bag = bag.set_member(Entry("tenant_id", "tenant456"))
        >>> bag.get_value("tenant_id")
        'tenant456'
        >>> Baggage.from_header(bag.to_header()) == bag
        True
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Iterable[Entry] = ()) -> None:
        collected: Dict[str, Entry] = {}
        for entry in entries:
            if entry.key in collected:
                raise DuplicateKeyError(f"Duplicate baggage key {entry.key!r}", key=entry.key)
            collected[entry.key] = entry
        _check_limits(collected)
        self._entries: Mapping[str, Entry] = MappingProxyType(collected)

    @classmethod
    def _from_validated(cls, entries: Dict[str, Entry]) -> Baggage:
        bag = cls.__new__(cls)
        bag._entries = MappingProxyType(entries)
        return bag

    @classmethod
    def from_dict(cls, values: Mapping[str, str]) -> Baggage:
        """Build a carrier from a plain ``{key: value}`` mapping."""
        return cls(Entry(key, value) for key, value in values.items())

    @classmethod
    def from_header(cls, header: str) -> Baggage:
        return parse(header)

    def to_header(self) -> str:
        return serialize(self)

    def members(self) -> Tuple[Entry, ...]:
        """Return every entry.  Callers must not rely on the order."""
        return tuple(self._entries.values())

    def get(self, key: str) -> Optional[Entry]:
        return self._entries.get(key)

    def get_value(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def set_member(self, entry: Entry) -> Baggage:
        """Return a new carrier with *entry* added or replacing the same key.

        Raises:
            LimitExceededError: If the result would not fit in one header.
        """
        entries = dict(self._entries)
        entries[entry.key] = entry
        _check_limits(entries)
        return Baggage._from_validated(entries)

    def delete_member(self, key: str) -> Baggage:
        """Return a new carrier without *key* (``self`` if it is absent)."""
        if key not in self._entries:
            return self
        entries = dict(self._entries)
        del entries[key]
        return Baggage._from_validated(entries)

    def to_dict(self) -> Dict[str, str]:
        return {key: entry.value for key, entry in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries.values())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Baggage):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __hash__(self) -> int:
        return hash(frozenset(self._entries.values()))

    def __repr__(self) -> str:
        return f"Baggage({list(self._entries.values())!r})"


EMPTY_BAGGAGE = Baggage()


def serialize(baggage: Baggage) -> str:
    """Serialize *baggage* to its W3C header value."""
    return ",".join(entry.serialize() for entry in baggage)


def _parse_property(raw: str) -> Optional[Property]:
    name, sep, value = raw.partition("=")
    name = name.strip()
    if not name:
        return None
    return Property(name, unquote(value.strip()) if sep else None)


def _parse_entry(raw: str) -> Entry:
    head, *props = raw.split(";")
    key, sep, value = head.partition("=")
    if not sep:
        raise InvalidValueError(f"Baggage entry {raw!r} has no value", key=key.strip())
    properties = tuple(p for p in (_parse_property(item) for item in props if item.strip()) if p is not None)
    return Entry(key.strip(), unquote(value.strip()), properties)


def parse(header: Optional[str]) -> Baggage:
    """Parse a W3C baggage header value.

    Malformed entries are skipped.  Duplicate keys keep the last occurrence.
    Headers longer than :data:`MAX_HEADER_BYTES` are ignored and at most
    :data:`MAX_ENTRIES` entries are read.  An entry whose re-encoded form
    would push the carrier past :data:`MAX_HEADER_BYTES` is skipped, so the
    result always serializes back within the limits.
    """
    if not header:
        return EMPTY_BAGGAGE

    if len(header.encode("utf-8", errors="replace")) > MAX_HEADER_BYTES:
        logger.warning("Baggage header exceeds %d bytes, ignoring it", MAX_HEADER_BYTES)
        return EMPTY_BAGGAGE

    entries: Dict[str, Entry] = {}
    size = 0
    for raw in header.split(","):
        if not raw.strip():
            continue
        if len(entries) >= MAX_ENTRIES:
            logger.warning("Baggage header has more than %d entries, ignoring the rest", MAX_ENTRIES)
            break
        try:
            entry = _parse_entry(raw)
        except (InvalidKeyError, InvalidValueError) as exc:
            logger.debug("Skipping malformed baggage entry %r: %s", raw, exc)
            continue
        previous = entries.pop(entry.key, None)
        if previous is not None:
            size -= _wire_size(previous)
        if size + _wire_size(entry) - 1 > MAX_HEADER_BYTES:
            logger.debug("Skipping baggage entry %r, carrier would exceed %d bytes", entry.key, MAX_HEADER_BYTES)
            if previous is not None:
                entries[previous.key] = previous
                size += _wire_size(previous)
            continue
        entries[entry.key] = entry
        size += _wire_size(entry)

    if not entries:
        return EMPTY_BAGGAGE
    return Baggage._from_validated(entries)
