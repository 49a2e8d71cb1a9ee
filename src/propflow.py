"""Public SDK surface for propflow.

This module provides a stable import path for library users.
It re-exports the ingestion entry points and typed models.
"""

from __future__ import annotations

from core.config import PropflowConfig
from core.sources import SourceConfig, build_sources, select_sources
from core.types import (
    IngestionRun,
    PropertyKey,
    PropertyRecord,
    RentalMedian,
    RunCounts,
    SalesEvent,
    SkippedRow,
)
from ingest.orchestrator import SourceOutcome, run_ingestion, run_sources
from store.database import create_store_engine, ensure_schema
from store.property_writer import load_property, load_sales_history
from store.run_registry import IngestionRunRegistry
from transforms.enrichment import enrich_record
from transforms.quality_scoring import quality_score

__all__ = [
    "IngestionRun",
    "IngestionRunRegistry",
    "PropertyKey",
    "PropertyRecord",
    "PropflowConfig",
    "RentalMedian",
    "RunCounts",
    "SalesEvent",
    "SkippedRow",
    "SourceConfig",
    "SourceOutcome",
    "build_sources",
    "create_store_engine",
    "enrich_record",
    "ensure_schema",
    "load_property",
    "load_sales_history",
    "quality_score",
    "run_ingestion",
    "run_sources",
    "select_sources",
]
