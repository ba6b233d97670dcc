"""
Ingestion package: refresh policy, enrichment orchestrator, migration.
"""
from mechanics_sync.ingestion.migration import MigrationMerger, snapshot_mechanics
from mechanics_sync.ingestion.orchestrator import EnrichmentOrchestrator
from mechanics_sync.ingestion.refresh_policy import (
    STALENESS_THRESHOLD,
    format_timestamp,
    needs_refresh,
    parse_timestamp,
)

__all__ = [
    "EnrichmentOrchestrator",
    "MigrationMerger",
    "STALENESS_THRESHOLD",
    "format_timestamp",
    "needs_refresh",
    "parse_timestamp",
    "snapshot_mechanics",
]
