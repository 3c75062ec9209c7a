"""
Pytest fixtures for ingestion engine tests.

Use these to drive full synchronization cycles without a live repository:
the remote index, download service, and analyzers are in-memory fakes, and
the graph store is a throwaway SQLite file under ``tmp_path``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from tenacity import wait_none

from ingestion.dispatcher import AnalyzerRegistry
from ingestion.errors import ResolutionError
from ingestion.fetcher import FetchedArtifact
from ingestion.graph_store import SqliteGraphStore
from ingestion.models import IngestionContext
from ingestion.pipeline import RunController
from types_models import (
    ArtifactCoordinate,
    ArtifactInfo,
    EngineConfig,
    FactDescriptor,
    RepositoryCredentials,
)

REPO_URL = "https://repo.example.org/maven2"
T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_info(
    artifact_id: str,
    version: str,
    minutes: int | None = 0,
    *,
    group_id: str = "org.example",
    packaging: str = "jar",
    classifier: str | None = None,
) -> ArtifactInfo:
    """Artifact record modified ``minutes`` after T0 (None = unknown time)."""
    return ArtifactInfo(
        coordinate=ArtifactCoordinate(
            group_id=group_id,
            artifact_id=artifact_id,
            packaging=packaging,
            version=version,
            classifier=classifier,
        ),
        last_modified=None if minutes is None else T0 + timedelta(minutes=minutes),
    )


@dataclass
class FakeRemoteIndex:
    """Remote index serving a fixed list of records, honouring the watermark."""

    records: list[ArtifactInfo] = field(default_factory=list)
    fail_refresh: bool = False
    refresh_calls: int = 0
    queried_since: list[datetime | None] = field(default_factory=list)
    yielded: int = 0

    def refresh(self, credentials: RepositoryCredentials) -> None:
        self.refresh_calls += 1
        if self.fail_refresh:
            raise ConnectionError("index unavailable")

    def query_changed_since(self, timestamp: datetime | None) -> Iterator[ArtifactInfo]:
        self.queried_since.append(timestamp)
        for record in self.records:
            if (
                timestamp is None
                or record.last_modified is None
                or record.last_modified >= timestamp
            ):
                self.yielded += 1
                yield record


@dataclass
class FakeDownloadService:
    """Writes a small file per coordinate; selected coordinates fail."""

    root: Path
    missing: set[str] = field(default_factory=set)
    transient_failures: dict[str, int] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    produced: list[Path] = field(default_factory=list)
    on_download: Callable[[ArtifactCoordinate], None] | None = None

    def download(
        self, coordinate: ArtifactCoordinate, credentials: RepositoryCredentials
    ) -> Path:
        self.calls.append(coordinate.key)
        if self.on_download is not None:
            self.on_download(coordinate)
        if coordinate.key in self.missing:
            raise ResolutionError(coordinate, "not found (HTTP 404)")
        remaining = self.transient_failures.get(coordinate.key, 0)
        if remaining:
            self.transient_failures[coordinate.key] = remaining - 1
            raise ResolutionError(coordinate, "connection reset", transient=True)
        path = self.root / f"{len(self.calls)}-{coordinate.file_name}"
        _ = path.write_bytes(f"content of {coordinate.key}".encode("utf-8"))
        self.produced.append(path)
        return path


@dataclass
class RecordingAnalyzer:
    """Accepts everything except the artifact ids listed in ``reject``."""

    name: str = "recording"
    reject: set[str] = field(default_factory=set)
    explode: set[str] = field(default_factory=set)
    seen: list[Path] = field(default_factory=list)

    def accepts(self, content: FetchedArtifact, scope: str) -> bool:
        return content.coordinate.artifact_id not in self.reject

    def analyze(self, content: FetchedArtifact) -> FactDescriptor | None:
        self.seen.append(content.path)
        if content.coordinate.artifact_id in self.explode:
            raise ValueError("corrupt archive")
        return FactDescriptor(
            labels=frozenset({"Jar", "File"}),
            properties={"bytes": content.size},
            analyzer=self.name,
        )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SqliteGraphStore]:
    graph = SqliteGraphStore(tmp_path / "graph.db")
    yield graph
    graph.close()


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(
        repository_url=REPO_URL,
        db_path=tmp_path / "graph.db",
        processing_cap=50,
        fetch_retry_attempts=3,
        fetch_retry_max_wait=1,
        request_timeout=5,
        log_file=str(tmp_path / "ingestion.log"),
    )


@pytest.fixture
def remote_index() -> FakeRemoteIndex:
    return FakeRemoteIndex()


@pytest.fixture
def downloads(tmp_path: Path) -> FakeDownloadService:
    root = tmp_path / "downloads"
    root.mkdir()
    return FakeDownloadService(root=root)


@pytest.fixture
def analyzer() -> RecordingAnalyzer:
    return RecordingAnalyzer()


@pytest.fixture
def make_controller(
    engine_config: EngineConfig,
    store: SqliteGraphStore,
    remote_index: FakeRemoteIndex,
    downloads: FakeDownloadService,
    analyzer: RecordingAnalyzer,
) -> Callable[..., RunController]:
    """Factory building a controller over the shared fakes; kwargs override config."""

    def _make(**overrides: object) -> RunController:
        cfg = engine_config.model_copy(update=overrides)
        ctx = IngestionContext(
            config=cfg,
            store=store,
            remote_index=remote_index,
            download_service=downloads,
            analyzers=AnalyzerRegistry([analyzer]),
        )
        return RunController(ctx, fetch_wait=wait_none())

    return _make
