"""Change detection against the remote repository index."""

from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from ingestion.errors import IndexRefreshError
from ingestion.models import RemoteIndex
from types_models import ArtifactCoordinate, ArtifactInfo, RepositoryCredentials

logger = logging.getLogger(__name__)


def _to_info(record: Any) -> ArtifactInfo:
    if isinstance(record, ArtifactInfo):
        return record
    if isinstance(record, tuple) and len(record) == 2:
        coordinate, last_modified = record
        if not isinstance(coordinate, ArtifactCoordinate):
            coordinate = ArtifactCoordinate.model_validate(coordinate)
        return ArtifactInfo(coordinate=coordinate, last_modified=last_modified)
    return ArtifactInfo.model_validate(record)


class ChangeDetector:
    """Enumerates artifacts added or modified since a watermark.

    ``refresh`` must succeed before ``since`` is consulted; an index that
    could not be brought up to date cannot be trusted to be consistent.
    """

    def __init__(self, remote_index: RemoteIndex) -> None:
        super().__init__()
        self._index = remote_index
        self._refreshed = False

    @property
    def refreshed(self) -> bool:
        return self._refreshed

    def refresh(self, credentials: RepositoryCredentials) -> None:
        self._refreshed = False
        try:
            self._index.refresh(credentials)
        except Exception as exc:
            raise IndexRefreshError(f"Remote index refresh failed: {exc}") from exc
        self._refreshed = True
        logger.info("🔄 Remote index refreshed")

    def since(
        self, watermark: datetime | None
    ) -> Generator[ArtifactInfo, None, None]:
        """Lazily yield changed artifacts at or after ``watermark``.

        Order is whatever the index produces. Malformed records are logged and
        dropped; a failing query is fatal for the cycle.
        """
        if not self._refreshed:
            raise IndexRefreshError("Remote index was not refreshed before querying")

        try:
            records = iter(self._index.query_changed_since(watermark))
        except Exception as exc:
            raise IndexRefreshError(f"Remote index query failed: {exc}") from exc

        while True:
            try:
                record = next(records)
            except StopIteration:
                return
            except Exception as exc:
                raise IndexRefreshError(f"Remote index query failed: {exc}") from exc

            try:
                info = _to_info(record)
            except (ValidationError, ValueError, TypeError) as exc:
                logger.warning("⚠️ Ignoring malformed index record %r: %s", record, exc)
                continue

            if (
                watermark is not None
                and info.last_modified is not None
                and info.last_modified < watermark
            ):
                logger.debug(
                    "Skipping %s modified before watermark (%s)",
                    info.coordinate,
                    info.last_modified.isoformat(),
                )
                continue
            yield info


__all__ = ["ChangeDetector"]
