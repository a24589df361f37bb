"""
Sync engine components for incremental listing feed replication.

Modules:
    resources: Registry of replicated feed resources (Property and its children)
    cursor: Timestamp/key resume cursors and the filters built from them
    parent_keys: Known parent keys and referential filtering of children
    sync_log: Append-only log of sync progress and resume cursors
    runner: Batch orchestrator driving the per-scope pipelines
    scheduler: APScheduler integration for periodic sync runs

Subpackages:
    extractors: Feed client and OData query helpers
    transformers: Feed record to sink row mapping
    loaders: Chunked idempotent upsert sink
    resilience: Retry, rate limiting and circuit breaking

Architecture:
    Each batch follows the same order:

    1. Fetch a page of parents, then their children
    2. Upsert parents and collect the committed keys
    3. Upsert only children whose parent was committed
    4. Advance the cursor and append a sync log entry

    Per-record and per-child failures are counted, never fatal.

Usage:
    from ingestion.extractors.feed_client import FeedClient
    from ingestion.loaders.postgres_loader import PostgresLoader
    from ingestion.runner import SyncRunner, SyncOptions, run_sync
"""
