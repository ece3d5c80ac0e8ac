# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel data models."""

from satchel.models.baggage import EMPTY_BAGGAGE, Baggage, Entry, Property, parse, serialize

__all__ = ["EMPTY_BAGGAGE", "Baggage", "Entry", "Property", "parse", "serialize"]
