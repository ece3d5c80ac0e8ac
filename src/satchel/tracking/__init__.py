# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Operational counters for the Satchel pipeline."""

from satchel.tracking.metrics import (
    record_attributes_truncated,
    record_baggage_entry_dropped,
    record_spans_dropped,
)

__all__ = [
    "record_attributes_truncated",
    "record_baggage_entry_dropped",
    "record_spans_dropped",
]
