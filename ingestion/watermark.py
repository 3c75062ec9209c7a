"""Durable per-repository synchronization watermark.

The watermark is the ``last_sync`` attribute of the repository node itself, so
it lives and dies with the graph and needs no side file.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ingestion.models import (
    LAST_SYNC_PROPERTY,
    REPOSITORY_LABEL,
    GraphStore,
    canonical_repository_url,
)
from types_models import Node

logger = logging.getLogger(__name__)


def format_timestamp(value: datetime | None) -> str:
    """Render a timestamp as ISO-8601 UTC, or an empty string when unknown."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class WatermarkStore:
    """Reads and writes the last successful sync time of each repository."""

    def __init__(self, store: GraphStore) -> None:
        super().__init__()
        self._store = store

    def find_repository(self, repository_url: str) -> Node | None:
        url = canonical_repository_url(repository_url)
        return self._store.find_by_key(REPOSITORY_LABEL, url)

    def get(self, repository_url: str) -> datetime | None:
        node = self.find_repository(repository_url)
        if node is None:
            return None
        return parse_timestamp(node.properties.get(LAST_SYNC_PROPERTY))

    def set(self, repository_url: str, timestamp: datetime) -> datetime:
        """Persist ``timestamp`` in its own transaction; never moves backwards.

        Returns the watermark in effect after the call.
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        with self._store.transaction():
            node = self.find_repository(repository_url)
            if node is None:
                raise KeyError(f"Unknown repository: {repository_url}")
            current = parse_timestamp(node.properties.get(LAST_SYNC_PROPERTY))
            if current is not None and timestamp < current:
                logger.warning(
                    "⚠️ Refusing to move watermark of %s back from %s to %s",
                    node.key,
                    format_timestamp(current),
                    format_timestamp(timestamp),
                )
                return current
            _ = self._store.update(
                node.id, {LAST_SYNC_PROPERTY: format_timestamp(timestamp)}
            )
        logger.info("Watermark for %s set to %s", node.key, format_timestamp(timestamp))
        return timestamp


__all__ = ["WatermarkStore", "format_timestamp", "parse_timestamp"]
