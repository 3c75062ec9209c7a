from __future__ import annotations

from collections.abc import Iterable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime
from typing import (
    Any,
    Protocol,
    TYPE_CHECKING,
    runtime_checkable,
)
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field

from types_models import (
    ArtifactCoordinate,
    ArtifactInfo,
    Edge,
    EngineConfig,
    FactDescriptor,
    Node,
    RepositoryCredentials,
)

if TYPE_CHECKING:
    from ingestion.dispatcher import AnalyzerRegistry
    from ingestion.fetcher import FetchedArtifact
else:
    AnalyzerRegistry = Any
    FetchedArtifact = Any

# Graph vocabulary shared by the merger, watermark store, and tests.
REPOSITORY_LABEL = "Repository"
ARTIFACT_LABEL = "RepositoryArtifact"
CONTAINS = "CONTAINS"
PREDECESSOR = "PREDECESSOR"
LAST_SYNC_PROPERTY = "last_sync"


def canonical_repository_url(url: str) -> str:
    """Normalise an endpoint URL so one repository maps to one node."""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


def artifact_identity_key(repository_url: str, coordinate: ArtifactCoordinate) -> str:
    return f"{canonical_repository_url(repository_url)}|{coordinate.key}"


@runtime_checkable
class RemoteIndex(Protocol):
    """Structural type for the remote repository index.

    The concrete protocol (Maven indexer, Nexus search, ...) lives outside the
    engine. ``query_changed_since`` may yield ``ArtifactInfo`` records or
    ``(coordinate, last_modified)`` pairs; ordering is not guaranteed.
    """

    def refresh(self, credentials: RepositoryCredentials) -> None: ...

    def query_changed_since(
        self, timestamp: datetime | None
    ) -> Iterable[ArtifactInfo | tuple[ArtifactCoordinate, Any]]: ...


@runtime_checkable
class DownloadService(Protocol):
    """Structural type for artifact download backends.

    ``download`` returns the local file holding the artifact bytes and raises
    ``ResolutionError`` when the artifact cannot be retrieved.
    """

    def download(
        self, coordinate: ArtifactCoordinate, credentials: RepositoryCredentials
    ) -> Any: ...


@runtime_checkable
class ContentAnalyzer(Protocol):
    """Structural type for format-specific content analyzers.

    ``accepts`` is the capability predicate consulted by the dispatcher;
    ``analyze`` is only called on content the analyzer accepted.
    """

    name: str

    def accepts(self, content: FetchedArtifact, scope: str) -> bool: ...

    def analyze(self, content: FetchedArtifact) -> FactDescriptor | None: ...


@runtime_checkable
class GraphStore(Protocol):
    """Structural type for the graph store the merger writes through."""

    def get(self, node_id: int) -> Node | None: ...

    def find_by_key(self, label: str, key: str) -> Node | None: ...

    def find_all(self, label: str, **properties: Any) -> list[Node]: ...

    def create(
        self,
        label: str | Iterable[str],
        *,
        key: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Node: ...

    def specialize(
        self,
        node_id: int,
        label: str,
        *,
        key: str | None = None,
        properties: Mapping[str, Any] | None = None,
    ) -> Node: ...

    def update(self, node_id: int, properties: Mapping[str, Any]) -> Node: ...

    def find_edge(self, source: int, type: str, target: int) -> Edge | None: ...

    def edges_from(self, source: int, type: str) -> list[Edge]: ...

    def edges_to(self, target: int, type: str) -> list[Edge]: ...

    def create_edge(
        self,
        source: int,
        type: str,
        target: int,
        properties: Mapping[str, Any] | None = None,
    ) -> Edge: ...

    def update_edge(self, edge: Edge, properties: Mapping[str, Any]) -> Edge: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def transaction(self) -> AbstractContextManager[None]: ...


class IngestionContext(BaseModel):
    """Validated container for collaborators shared across one engine run.

    Everything here is built once, before the first cycle, and treated as
    read-only configuration afterwards.
    """

    config: EngineConfig
    store: GraphStore
    remote_index: RemoteIndex
    download_service: DownloadService
    analyzers: "AnalyzerRegistry"
    credentials: RepositoryCredentials = Field(default_factory=RepositoryCredentials)

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    @property
    def repository_url(self) -> str:
        return canonical_repository_url(self.config.repository_url)


__all__ = [
    "REPOSITORY_LABEL",
    "ARTIFACT_LABEL",
    "CONTAINS",
    "PREDECESSOR",
    "LAST_SYNC_PROPERTY",
    "canonical_repository_url",
    "artifact_identity_key",
    "RemoteIndex",
    "DownloadService",
    "ContentAnalyzer",
    "GraphStore",
    "IngestionContext",
]
