"""Error taxonomy for the ingestion engine.

Per-item errors (`ResolutionError`, `AnalysisError`) are recorded by the run
controller and the cycle continues. Cycle-fatal errors (`IndexRefreshError`,
`MergeError`) propagate to the caller with the watermark left untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types_models import ArtifactCoordinate, CycleReport


class IngestionError(RuntimeError):
    """Base class for every error raised by the ingestion engine."""


class CycleFatalError(IngestionError):
    """Error that aborts the whole cycle; carries the partial report once known."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.report: CycleReport | None = None


class IndexRefreshError(CycleFatalError):
    """Raised when the remote index cannot be refreshed or queried."""


class MergeError(CycleFatalError):
    """Raised when graph mutation for one artifact failed and was rolled back."""

    def __init__(self, coordinate: ArtifactCoordinate | None, reason: str) -> None:
        target = coordinate.key if coordinate is not None else "<repository>"
        super().__init__(f"Merge failed for {target}: {reason}")
        self.coordinate = coordinate
        self.reason = reason


class ResolutionError(IngestionError):
    """Raised when an artifact cannot be located or downloaded.

    ``transient`` marks failures worth retrying (timeouts, connection resets,
    server errors); missing artifacts and rejected credentials are permanent.
    """

    def __init__(
        self,
        coordinate: ArtifactCoordinate,
        reason: str,
        *,
        transient: bool = False,
    ) -> None:
        super().__init__(f"Cannot resolve {coordinate.key}: {reason}")
        self.coordinate = coordinate
        self.reason = reason
        self.transient = transient


class AnalysisError(IngestionError):
    """Raised when an analyzer accepted content but failed to analyze it."""

    def __init__(self, path: str, analyzer: str, reason: str) -> None:
        super().__init__(f"Analyzer {analyzer} failed on {path}: {reason}")
        self.path = path
        self.analyzer = analyzer
        self.reason = reason


__all__ = [
    "IngestionError",
    "CycleFatalError",
    "IndexRefreshError",
    "MergeError",
    "ResolutionError",
    "AnalysisError",
]
