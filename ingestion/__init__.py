"""
Pipeline components for building and publishing the epidemiological snapshot.

Modules:
    sources: The fixed remote sources and their formats
    runner: Orchestrator sequencing fetch, parse, reconcile, dump and publish

Subpackages:
    extractors: Cached HTTP fetcher and source parsers
    transformers: Reconciliation of sources into canonical record sets
    loaders: Snapshot publisher swapping in freshly built tables

Architecture:
    Each run rebuilds the full dataset:

    1. Fetch - Download the five sources concurrently (optionally cached)
    2. Parse - Decode JSON, plain grids and quoted CSV into rows
    3. Reconcile - Forward-fill, merge by date, filter interventions
    4. Publish - Shadow table, bulk insert, atomic rename, cleanup

    Any failure aborts the run before the live tables change.

Usage:
    from ingestion.extractors.fetcher import CachedFetcher
    from ingestion.loaders.snapshot_publisher import SnapshotPublisher
    from ingestion.runner import PipelineRunner

Example:
    async with CachedFetcher(cache_dir="cache") as fetcher:
        runner = PipelineRunner(fetcher, SnapshotPublisher(engine), output_dir="cache")
        result = await runner.run()

    print(f"Published {result['published']}")
"""

__all__ = [
    "CachedFetcher",
    "Reconciler",
    "SnapshotPublisher",
    "PipelineRunner",
]
