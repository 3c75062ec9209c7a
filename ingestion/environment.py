"""Process-wide setup and collaborator wiring for the ingestion engine.

Every collaborator the run controller needs (graph store, remote index,
download service, analyzer registry, credentials) is constructed here, once,
and handed over explicitly through an ``IngestionContext``. Nothing is created
lazily inside the controller, so tests can substitute any piece.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from ingestion.configuration import DEFAULT_CONFIG, validate_config
from ingestion.dispatcher import AnalyzerRegistry, ChecksumAnalyzer
from ingestion.fetcher import HttpDownloadService
from ingestion.graph_store import SqliteGraphStore
from ingestion.models import (
    DownloadService,
    GraphStore,
    IngestionContext,
    RemoteIndex,
)
from ingestion.pipeline import configure_logging
from types_models import EngineConfig

logger = logging.getLogger(__name__)


def default_registry() -> AnalyzerRegistry:
    """Registry holding the analyzers shipped with the engine."""
    return AnalyzerRegistry([ChecksumAnalyzer()])


class EnvironmentManager:
    """Apply logging configuration and build the shared ingestion context."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        super().__init__()
        self._config = config or DEFAULT_CONFIG
        self._context: IngestionContext | None = None
        self._owned_store: SqliteGraphStore | None = None
        self._owned_download: HttpDownloadService | None = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    def apply(self) -> None:
        """Install log handlers according to the configuration."""
        configure_logging(self._config.log_file, self._config.log_level)
        logger.info("Ingestion logging configured (level=%s)", self._config.log_level)

    def initialize(
        self,
        remote_index: RemoteIndex,
        *,
        download_service: DownloadService | None = None,
        analyzers: AnalyzerRegistry | None = None,
        store: GraphStore | None = None,
    ) -> IngestionContext:
        """Instantiate the shared ingestion context, caching the result.

        The remote index is always supplied by the caller; the other
        collaborators default to the SQLite store, HTTP downloads, and the
        built-in analyzers.
        """
        if self._context is not None:
            return self._context

        cfg = self._config
        validate_config(cfg)

        if store is None:
            self._owned_store = SqliteGraphStore(cfg.db_path)
            store = self._owned_store
        if download_service is None:
            self._owned_download = HttpDownloadService(
                cfg.repository_url,
                timeout=cfg.request_timeout,
                download_dir=cfg.download_dir,
            )
            download_service = self._owned_download

        self._context = IngestionContext(
            config=cfg,
            store=store,
            remote_index=remote_index,
            download_service=download_service,
            analyzers=analyzers if analyzers is not None else default_registry(),
            credentials=cfg.credentials,
        )
        return self._context

    def close(self) -> None:
        """Release collaborators this manager created itself."""
        if self._owned_download is not None:
            self._owned_download.close()
            self._owned_download = None
        if self._owned_store is not None:
            self._owned_store.close()
            self._owned_store = None
        self._context = None

    @contextmanager
    def session(self, remote_index: RemoteIndex, **collaborators) -> Iterator[IngestionContext]:
        """Context manager yielding an initialised context and closing it afterwards."""
        try:
            yield self.initialize(remote_index, **collaborators)
        finally:
            self.close()


__all__ = ["EnvironmentManager", "default_registry"]
