"""
Catalog synchronization pipeline.

This package keeps the wholesale catalog in sync with the e-commerce
platform:

Modules:
    aliases: Raw collection value -> canonical collection, signal recording
    run_tracker: Persisted SyncRun state machine
    orchestrator: End-to-end run with progress, cancellation and hooks
    hooks: Post-processing hook registry
    service: Control surface shared by the API, scheduler and CLI
    scheduler: APScheduler integration for periodic runs

Subpackages:
    extractors: Bulk query protocol (submit, poll, stream JSONL)
    transformers: Data-driven catalog derivation and size ordering
    loaders: Idempotent staging / catalog upserts and pre-sync backups

Architecture:
    source -> BulkCatalogExtractor -> raw_catalog_records
           -> CatalogTransformer (+ AliasResolver) -> catalog_items
           -> post-processing hooks

Usage:
    from catalog_sync.service import SyncService
    from models.base import SyncTrigger

    service = SyncService()
    run = await service.start_sync(SyncTrigger.MANUAL, wait=True)
    print(run.status, run.records_written)

Error Handling:
    All components raise exceptions from core.exceptions. The orchestrator
    turns them into the run's terminal status (failed, timeout, cancelled)
    and persists the message on the SyncRun.
"""

