"""
Incremental repository ingestion engine.

The package is composed from small, testable modules: change detection,
artifact fetching, scan dispatch, graph merging, and the run controller that
ties them into synchronization cycles.
"""

from ingestion import (
    change_detector,
    configuration,
    dispatcher,
    environment,
    errors,
    fetcher,
    graph_store,
    merger,
    models,
    pipeline,
    progress,
    watermark,
)

__all__ = [
    "models",
    "errors",
    "configuration",
    "graph_store",
    "watermark",
    "change_detector",
    "fetcher",
    "dispatcher",
    "merger",
    "progress",
    "pipeline",
    "environment",
]
