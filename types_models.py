"""
Type definitions and Pydantic models for the ingestion engine.

This module provides validated value types shared by the change detector,
fetcher, dispatcher, merger, and run controller.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

# Packaging types whose files use a different extension in the repository layout.
_PACKAGING_EXTENSIONS: dict[str, str] = {
    "maven-plugin": "jar",
    "bundle": "jar",
    "ejb": "jar",
    "eclipse-plugin": "jar",
    "test-jar": "jar",
}


class ArtifactCoordinate(BaseModel):
    """Immutable coordinate identifying one artifact in a remote repository."""

    group_id: str = Field(min_length=1, description="Group identifier")
    artifact_id: str = Field(min_length=1, description="Artifact identifier")
    packaging: str = Field(default="jar", min_length=1, description="Packaging type")
    version: str = Field(min_length=1, description="Artifact version")
    classifier: str | None = Field(default=None, description="Optional classifier")

    model_config = ConfigDict(frozen=True)

    @field_validator("classifier", mode="before")
    @classmethod
    def _blank_classifier_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def key(self) -> str:
        """Identity key: group:artifact:packaging:version[:classifier]."""
        parts = [self.group_id, self.artifact_id, self.packaging, self.version]
        if self.classifier:
            parts.append(self.classifier)
        return ":".join(parts)

    @property
    def lineage_key(self) -> str:
        """Key shared by every version of the same artifact."""
        parts = [self.group_id, self.artifact_id]
        if self.classifier:
            parts.append(self.classifier)
        return ":".join(parts)

    @property
    def extension(self) -> str:
        return _PACKAGING_EXTENSIONS.get(self.packaging, self.packaging)

    @property
    def file_name(self) -> str:
        suffix = f"-{self.classifier}" if self.classifier else ""
        return f"{self.artifact_id}-{self.version}{suffix}.{self.extension}"

    @property
    def repository_path(self) -> str:
        """Relative path of the artifact file in a Maven-2 layout repository."""
        group_path = self.group_id.replace(".", "/")
        return f"{group_path}/{self.artifact_id}/{self.version}/{self.file_name}"

    @property
    def is_snapshot(self) -> bool:
        return self.version.endswith("-SNAPSHOT")

    def __str__(self) -> str:
        return self.key


class ArtifactInfo(BaseModel):
    """Coordinate plus the change metadata reported by the remote index."""

    coordinate: ArtifactCoordinate
    last_modified: datetime | None = Field(
        default=None, description="Last modification time reported by the index (UTC)"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("last_modified", mode="before")
    @classmethod
    def _normalize_timestamp(cls, v: Any) -> Any:
        """Accept epoch milliseconds and treat naive datetimes as UTC."""
        if v is None or v == "":
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return datetime.fromtimestamp(v / 1000.0, tz=timezone.utc)
        if isinstance(v, str):
            v = datetime.fromisoformat(v)
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class FactDescriptor(BaseModel):
    """Analyzer-agnostic result of scanning artifact content.

    The merger never interprets labels or properties; it only persists them on
    the node that becomes the repository artifact.
    """

    labels: frozenset[str] = Field(default_factory=frozenset)
    properties: dict[str, Any] = Field(default_factory=dict)
    analyzer: str = Field(description="Name of the analyzer that produced the facts")


class Node(BaseModel):
    """Snapshot of a graph node read from the store."""

    id: int
    labels: frozenset[str]
    key: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)

    def has_label(self, label: str) -> bool:
        return label in self.labels


class Edge(BaseModel):
    """Snapshot of a directed, typed graph edge."""

    id: int
    source: int
    type: str
    target: int
    properties: dict[str, Any] = Field(default_factory=dict)


class RepositoryCredentials(BaseModel):
    """Credentials shared by index refresh and artifact download."""

    username: str | None = None
    password: SecretStr | None = None

    model_config = ConfigDict(frozen=True)

    def as_auth(self) -> tuple[str, str] | None:
        if not self.username:
            return None
        secret = self.password.get_secret_value() if self.password else ""
        return self.username, secret


Stage = Literal["fetch", "scan", "merge"]


class Diagnostic(BaseModel):
    """Per-item failure or skip recorded during a cycle."""

    coordinate: str
    stage: Stage
    reason: str


class CycleReport(BaseModel):
    """Counts and outcome of one synchronization cycle."""

    repository_url: str
    discovered: int = Field(default=0, ge=0)
    fetched: int = Field(default=0, ge=0)
    analyzed: int = Field(default=0, ge=0)
    merged: int = Field(default=0, ge=0)
    unchanged: int = Field(
        default=0, ge=0, description="Merged items already present with the same last_modified"
    )
    skipped: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    capped: bool = False
    stopped: bool = False
    previous_watermark: datetime | None = None
    watermark: datetime | None = None
    retry_from: datetime | None = Field(
        default=None, description="Earliest timestamp of an item whose download failed transiently"
    )
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    skip_reasons: dict[str, int] = Field(default_factory=dict)
    status: Literal["running", "completed", "failed"] = "running"
    error: str | None = None

    model_config = ConfigDict(validate_assignment=True)

    def record(
        self,
        info: ArtifactInfo,
        stage: Stage,
        reason: str,
        *,
        failed: bool,
        category: str | None = None,
    ) -> None:
        """Count a skipped or failed item and keep its diagnostic.

        ``category`` groups repeated reasons in the summary breakdown.
        """
        if failed:
            self.failed += 1
        else:
            self.skipped += 1
        self.diagnostics.append(
            Diagnostic(coordinate=info.coordinate.key, stage=stage, reason=reason)
        )
        bucket = category or reason.split(":", 1)[0].strip().rstrip(".")
        self.skip_reasons[bucket] = self.skip_reasons.get(bucket, 0) + 1


class EngineConfig(BaseModel):
    """Configuration for one ingestion engine instance with full validation."""

    repository_url: str = Field(min_length=1, description="Remote repository endpoint")
    db_path: Path = Field(description="Path to the SQLite graph database")
    processing_cap: int = Field(
        ge=0, description="Maximum artifacts merged per cycle (0 = unlimited)"
    )
    fetch_retry_attempts: int = Field(ge=1, description="Download attempts per artifact")
    fetch_retry_max_wait: int = Field(
        ge=1, description="Upper bound in seconds for backoff between attempts"
    )
    request_timeout: int = Field(ge=1, description="HTTP timeout in seconds")
    download_dir: Path | None = Field(
        default=None, description="Directory for temporary downloads (system temp if unset)"
    )
    log_file: str = Field(description="Ingestion log file")
    log_level: str = Field(default="INFO", description="Root log level")
    credentials: RepositoryCredentials = Field(default_factory=RepositoryCredentials)

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    @field_validator("db_path", "download_dir", mode="before")
    @classmethod
    def _convert_to_path(cls, v: Any) -> Any:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v
