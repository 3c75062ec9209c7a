"""Route fetched content to the first analyzer that can handle it.

Analyzers are registered once at startup and consulted in registration order
through their ``accepts`` predicate. The dispatcher knows nothing about
artifact formats; format knowledge stays inside the analyzers.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from ingestion.errors import AnalysisError
from ingestion.fetcher import FetchedArtifact
from ingestion.models import ContentAnalyzer
from types_models import FactDescriptor

logger = logging.getLogger(__name__)

ARTIFACT_SCOPE = "artifact"


def calculate_file_hash(path: Path) -> str:
    """Calculate SHA256 hash of file contents, reading in size-tiered chunks."""
    file_size = path.stat().st_size

    if file_size < 1024 * 1024:
        chunk_size = 4096
    elif file_size < 10 * 1024 * 1024:
        chunk_size = 64 * 1024
    elif file_size < 100 * 1024 * 1024:
        chunk_size = 256 * 1024
    else:
        chunk_size = 1024 * 1024

    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class AnalyzerRegistry:
    """Ordered, startup-time collection of content analyzers."""

    def __init__(self, analyzers: Iterable[ContentAnalyzer] = ()) -> None:
        super().__init__()
        self._analyzers: list[ContentAnalyzer] = []
        for analyzer in analyzers:
            self.register(analyzer)

    def register(self, analyzer: ContentAnalyzer) -> None:
        if not isinstance(analyzer, ContentAnalyzer):
            raise TypeError(
                f"{type(analyzer).__name__} does not implement accepts()/analyze()"
            )
        if any(existing.name == analyzer.name for existing in self._analyzers):
            raise ValueError(f"Analyzer {analyzer.name!r} is already registered")
        self._analyzers.append(analyzer)
        logger.debug("Registered analyzer %s", analyzer.name)

    def __iter__(self) -> Iterator[ContentAnalyzer]:
        return iter(tuple(self._analyzers))

    def __len__(self) -> int:
        return len(self._analyzers)

    @property
    def names(self) -> list[str]:
        return [analyzer.name for analyzer in self._analyzers]


class ScanDispatcher:
    """Hands fetched content to the first accepting analyzer."""

    def __init__(self, registry: AnalyzerRegistry) -> None:
        super().__init__()
        self._registry = registry

    def dispatch(
        self,
        resource: FetchedArtifact,
        path_hint: str,
        scope: str = ARTIFACT_SCOPE,
    ) -> FactDescriptor | None:
        """Return the facts of the first accepting analyzer, or None.

        ``None`` means "not applicable": nothing accepted the content, or the
        accepting analyzer found nothing to report. Analyzer failures are
        raised as ``AnalysisError``.
        """
        for analyzer in self._registry:
            try:
                accepted = analyzer.accepts(resource, scope)
            except Exception as exc:
                raise AnalysisError(path_hint, analyzer.name, f"accepts() failed: {exc}") from exc
            if not accepted:
                continue

            try:
                descriptor = analyzer.analyze(resource)
            except AnalysisError:
                raise
            except Exception as exc:
                raise AnalysisError(
                    path_hint, analyzer.name, f"{type(exc).__name__}: {exc}"
                ) from exc

            if descriptor is None:
                logger.debug("Analyzer %s produced no facts for %s", analyzer.name, path_hint)
            return descriptor

        logger.debug("No analyzer accepted %s", path_hint)
        return None


class ChecksumAnalyzer:
    """Format-agnostic analyzer recording size and SHA256 of any artifact file."""

    name = "checksum"

    def accepts(self, content: FetchedArtifact, scope: str) -> bool:
        return scope == ARTIFACT_SCOPE and content.size > 0 and content.path.is_file()

    def analyze(self, content: FetchedArtifact) -> FactDescriptor | None:
        return FactDescriptor(
            labels=frozenset({"File"}),
            properties={
                "file_name": content.coordinate.file_name,
                "size": content.size,
                "sha256": calculate_file_hash(content.path),
            },
            analyzer=self.name,
        )


__all__ = [
    "ARTIFACT_SCOPE",
    "AnalyzerRegistry",
    "ScanDispatcher",
    "ChecksumAnalyzer",
    "calculate_file_hash",
]
