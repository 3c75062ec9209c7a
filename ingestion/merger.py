"""Idempotent upsert of scanned artifacts into the graph.

One call to ``IngestionMerger.merge`` is one unit of work:
  1. find the repository artifact by identity key, or materialise the
     generic descriptor as a node and specialize that same node;
  2. overwrite ``last_modified`` (empty string when unknown);
  3. create or refresh the CONTAINS edge from the repository;
  4. link the predecessor version once, never re-pointing or forking the chain.
Either every write of a merge commits or none does.
"""

from __future__ import annotations

import logging

from ingestion.errors import MergeError
from ingestion.models import (
    ARTIFACT_LABEL,
    CONTAINS,
    PREDECESSOR,
    REPOSITORY_LABEL,
    GraphStore,
    artifact_identity_key,
    canonical_repository_url,
)
from ingestion.watermark import format_timestamp
from types_models import ArtifactInfo, FactDescriptor, Node
from utils.maven_version import MavenVersion

logger = logging.getLogger(__name__)

LAST_MODIFIED_PROPERTY = "last_modified"


class IngestionMerger:
    """The only component that mutates the persistent graph."""

    def __init__(self, store: GraphStore) -> None:
        super().__init__()
        self._store = store

    def find_or_create_repository(self, repository_url: str) -> Node:
        """Return the single repository node for ``repository_url``."""
        url = canonical_repository_url(repository_url)
        try:
            with self._store.transaction():
                node = self._store.find_by_key(REPOSITORY_LABEL, url)
                if node is None:
                    node = self._store.create(
                        REPOSITORY_LABEL, key=url, properties={"url": url}
                    )
                    logger.info("📦 Registered repository %s", url)
        except Exception as exc:
            raise MergeError(None, f"cannot register repository {url}: {exc}") from exc
        return node

    def is_current(self, repository: Node, info: ArtifactInfo) -> bool:
        """True when the artifact is already contained with the same ``last_modified``."""
        key = artifact_identity_key(str(repository.key), info.coordinate)
        node = self._store.find_by_key(ARTIFACT_LABEL, key)
        if node is None:
            return False
        edge = self._store.find_edge(repository.id, CONTAINS, node.id)
        if edge is None:
            return False
        return edge.properties.get(LAST_MODIFIED_PROPERTY) == format_timestamp(
            info.last_modified
        )

    def merge(
        self, repository: Node, info: ArtifactInfo, descriptor: FactDescriptor
    ) -> Node:
        """Upsert one scanned artifact below ``repository``.

        Raises ``MergeError`` after rolling back when any graph write fails.
        """
        coordinate = info.coordinate
        try:
            with self._store.transaction():
                node = self._upsert_artifact(repository, info, descriptor)
                self._upsert_contains(repository, node, info)
                self._link_predecessor(repository, node)
        except Exception as exc:
            raise MergeError(coordinate, f"{type(exc).__name__}: {exc}") from exc
        return node

    def _upsert_artifact(
        self, repository: Node, info: ArtifactInfo, descriptor: FactDescriptor
    ) -> Node:
        coordinate = info.coordinate
        repository_url = str(repository.key)
        key = artifact_identity_key(repository_url, coordinate)
        last_modified = format_timestamp(info.last_modified)

        attributes = {
            "group_id": coordinate.group_id,
            "artifact_id": coordinate.artifact_id,
            "packaging": coordinate.packaging,
            "version": coordinate.version,
            "classifier": coordinate.classifier,
            "lineage_key": coordinate.lineage_key,
            "repository": repository_url,
            "snapshot": coordinate.is_snapshot,
            LAST_MODIFIED_PROPERTY: last_modified,
        }

        existing = self._store.find_by_key(ARTIFACT_LABEL, key)
        if existing is not None:
            logger.debug("Refreshing existing artifact %s (node %s)", coordinate, existing.id)
            node = existing
            for label in descriptor.labels - existing.labels:
                node = self._store.specialize(node.id, label)
            return self._store.update(node.id, {**descriptor.properties, **attributes})

        labels = descriptor.labels or frozenset({"Artifact"})
        generic = self._store.create(labels, properties=descriptor.properties)
        # Same id before and after: the generic node becomes the artifact.
        node = self._store.specialize(
            generic.id, ARTIFACT_LABEL, key=key, properties=attributes
        )
        logger.debug("Created artifact %s (node %s)", coordinate, node.id)
        return node

    def _upsert_contains(self, repository: Node, node: Node, info: ArtifactInfo) -> None:
        last_modified = format_timestamp(info.last_modified)
        edge = self._store.find_edge(repository.id, CONTAINS, node.id)
        if edge is None:
            _ = self._store.create_edge(
                repository.id, CONTAINS, node.id, {LAST_MODIFIED_PROPERTY: last_modified}
            )
        else:
            _ = self._store.update_edge(edge, {LAST_MODIFIED_PROPERTY: last_modified})

    def predecessor_of(self, node: Node) -> Node | None:
        edges = self._store.edges_from(node.id, PREDECESSOR)
        if not edges:
            return None
        return self._store.get(edges[0].target)

    def _select_predecessor(self, repository: Node, node: Node) -> Node | None:
        """Pick the closest lower version with the same lineage key.

        Versions are ordered Maven-style; among equal versions the node
        discovered first (lowest id) wins.
        """
        version = MavenVersion(str(node.properties["version"]))
        candidates = [
            other
            for other in self._store.find_all(
                ARTIFACT_LABEL,
                lineage_key=node.properties["lineage_key"],
                repository=repository.key,
            )
            if other.id != node.id and MavenVersion(str(other.properties["version"])) < version
        ]
        if not candidates:
            return None
        best_version = max(MavenVersion(str(c.properties["version"])) for c in candidates)
        closest = [
            c for c in candidates if MavenVersion(str(c.properties["version"])) == best_version
        ]
        return min(closest, key=lambda c: c.id)

    def _link_predecessor(self, repository: Node, node: Node) -> None:
        candidate = self._select_predecessor(repository, node)
        current = self.predecessor_of(node)

        if current is not None:
            if candidate is not None and candidate.id != current.id:
                logger.warning(
                    "⚠️ Lineage of %s already points to node %s; keeping it instead of node %s",
                    node.key,
                    current.id,
                    candidate.id,
                )
            return

        if candidate is None:
            return

        successors = [
            edge for edge in self._store.edges_to(candidate.id, PREDECESSOR)
            if edge.source != node.id
        ]
        if successors:
            # A version slotted in below an existing link stays unlinked; the chain never forks.
            logger.warning(
                "⚠️ %s already has successor node %s; leaving %s without a predecessor",
                candidate.key,
                successors[0].source,
                node.key,
            )
            return

        _ = self._store.create_edge(node.id, PREDECESSOR, candidate.id)
        logger.debug(
            "Linked %s -> predecessor %s",
            node.properties.get("version"),
            candidate.properties.get("version"),
        )


__all__ = ["IngestionMerger", "LAST_MODIFIED_PROPERTY"]
