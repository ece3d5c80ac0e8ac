# SPDX-FileCopyrightText: 2026 The Satchel Authors
# SPDX-License-Identifier: Apache-2.0

"""Satchel span processors.

- :class:`BaggageEnricher`: copies baggage onto starting spans
- :class:`BatchExportProcessor`: queues ended spans for the exporter
- :class:`SpanProcessorChain`: runs the stages in order
"""

from satchel.processors.batch import BatchExportProcessor, export_deadline
from satchel.processors.chain import SpanProcessorChain
from satchel.processors.enricher import BaggageEnricher

__all__ = ["BaggageEnricher", "BatchExportProcessor", "SpanProcessorChain", "export_deadline"]
