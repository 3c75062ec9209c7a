from __future__ import annotations

import logging

import pytest
from conftest import REPO_URL, make_info

from ingestion.errors import MergeError
from ingestion.graph_store import SqliteGraphStore
from ingestion.merger import IngestionMerger
from ingestion.models import ARTIFACT_LABEL, CONTAINS, PREDECESSOR, REPOSITORY_LABEL
from types_models import FactDescriptor, Node

_FACTS = FactDescriptor(
    labels=frozenset({"Jar", "File"}), properties={"sha256": "cafe"}, analyzer="test"
)


def _version_of(node: Node | None) -> str | None:
    return None if node is None else node.properties["version"]


def test_repository_is_created_once(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)

    first = merger.find_or_create_repository(REPO_URL)
    second = merger.find_or_create_repository("HTTPS://Repo.Example.org/maven2/")

    assert first.id == second.id
    assert store.count(REPOSITORY_LABEL) == 1


def test_merge_specializes_descriptor_node(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    node = merger.merge(repo, make_info("lib", "1.0", 5), _FACTS)

    assert node.labels == {"Jar", "File", ARTIFACT_LABEL}
    assert node.key == f"{REPO_URL}|org.example:lib:jar:1.0"
    assert node.properties["sha256"] == "cafe"
    assert node.properties["lineage_key"] == "org.example:lib"
    assert node.properties["last_modified"] == "2024-01-01T12:05:00+00:00"
    assert store.count("Jar") == 1

    edge = store.find_edge(repo.id, CONTAINS, node.id)
    assert edge is not None
    assert edge.properties == {"last_modified": "2024-01-01T12:05:00+00:00"}


def test_merge_is_idempotent(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    first = merger.merge(repo, make_info("lib", "1.0", 1), _FACTS)
    second = merger.merge(repo, make_info("lib", "1.0", 9), _FACTS)

    assert first.id == second.id
    assert store.count(ARTIFACT_LABEL) == 1
    assert len(store.edges_from(repo.id, CONTAINS)) == 1
    edge = store.find_edge(repo.id, CONTAINS, first.id)
    assert edge is not None
    assert edge.properties["last_modified"] == "2024-01-01T12:09:00+00:00"


def test_remerge_adds_new_descriptor_labels(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)
    _ = merger.merge(repo, make_info("lib", "1.0", 1), _FACTS)

    richer = FactDescriptor(
        labels=frozenset({"Jar", "Maven"}), properties={"entries": 12}, analyzer="test"
    )
    node = merger.merge(repo, make_info("lib", "1.0", 1), richer)

    assert node.labels == {"Jar", "File", "Maven", ARTIFACT_LABEL}
    assert node.properties["entries"] == 12
    assert node.properties["sha256"] == "cafe"


def test_unknown_last_modified_is_empty_string(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    node = merger.merge(repo, make_info("lib", "1.0", None), _FACTS)

    edge = store.find_edge(repo.id, CONTAINS, node.id)
    assert edge is not None
    assert edge.properties["last_modified"] == ""
    assert node.properties["last_modified"] == ""


def test_snapshot_lineage_links_predecessor(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    older = merger.merge(repo, make_info("lib", "1.0-SNAPSHOT", 1), _FACTS)
    newer = merger.merge(repo, make_info("lib", "1.1-SNAPSHOT", 2), _FACTS)

    assert merger.predecessor_of(older) is None
    assert _version_of(merger.predecessor_of(newer)) == "1.0-SNAPSHOT"
    assert newer.properties["snapshot"] is True


def test_predecessor_uses_version_order_not_discovery_order(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    _ = merger.merge(repo, make_info("lib", "1.10", 1), _FACTS)
    _ = merger.merge(repo, make_info("lib", "1.2", 2), _FACTS)
    latest = merger.merge(repo, make_info("lib", "2.0", 3), _FACTS)

    assert _version_of(merger.predecessor_of(latest)) == "1.10"


def test_predecessor_ignores_other_lineages_and_repositories(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)
    mirror = merger.find_or_create_repository("https://mirror.example.org/maven2")

    _ = merger.merge(mirror, make_info("lib", "1.0", 1), _FACTS)
    _ = merger.merge(repo, make_info("other", "1.0", 1), _FACTS)
    _ = merger.merge(repo, make_info("lib", "1.0", 1, classifier="sources"), _FACTS)
    node = merger.merge(repo, make_info("lib", "1.1", 2), _FACTS)

    assert merger.predecessor_of(node) is None


def test_equal_versions_prefer_first_discovered(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    first = merger.merge(repo, make_info("lib", "1.0", 1), _FACTS)
    _ = merger.merge(repo, make_info("lib", "1.0.0", 2), _FACTS)
    node = merger.merge(repo, make_info("lib", "1.1", 3), _FACTS)

    predecessor = merger.predecessor_of(node)
    assert predecessor is not None
    assert predecessor.id == first.id


def test_predecessor_is_never_repointed(
    store: SqliteGraphStore, caplog: pytest.LogCaptureFixture
) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    _ = merger.merge(repo, make_info("lib", "1.0", 1), _FACTS)
    latest = merger.merge(repo, make_info("lib", "1.2", 2), _FACTS)
    _ = merger.merge(repo, make_info("lib", "1.1", 3), _FACTS)

    with caplog.at_level(logging.WARNING, logger="ingestion.merger"):
        _ = merger.merge(repo, make_info("lib", "1.2", 2), _FACTS)

    assert _version_of(merger.predecessor_of(latest)) == "1.0"
    assert len(store.edges_from(latest.id, PREDECESSOR)) == 1
    assert "already points to" in caplog.text


def test_failed_merge_rolls_back(
    store: SqliteGraphStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    def _broken_edge(*args: object, **kwargs: object) -> None:
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "create_edge", _broken_edge)

    info = make_info("lib", "1.0", 1)
    with pytest.raises(MergeError, match="disk full") as excinfo:
        _ = merger.merge(repo, info, _FACTS)

    assert excinfo.value.coordinate == info.coordinate
    assert store.count(ARTIFACT_LABEL) == 0
    assert store.count("Jar") == 0
    assert not store.in_transaction


def test_version_inserted_between_does_not_fork_lineage(
    store: SqliteGraphStore, caplog: pytest.LogCaptureFixture
) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)

    first = merger.merge(repo, make_info("lib", "1.0", 1), _FACTS)
    third = merger.merge(repo, make_info("lib", "3.0", 2), _FACTS)
    with caplog.at_level(logging.WARNING, logger="ingestion.merger"):
        second = merger.merge(repo, make_info("lib", "2.0", 3), _FACTS)

    assert [edge.source for edge in store.edges_to(first.id, PREDECESSOR)] == [third.id]
    assert merger.predecessor_of(second) is None
    assert "already has successor" in caplog.text


def test_is_current_tracks_containment_timestamp(store: SqliteGraphStore) -> None:
    merger = IngestionMerger(store)
    repo = merger.find_or_create_repository(REPO_URL)
    info = make_info("lib", "1.0", 1)

    assert not merger.is_current(repo, info)
    _ = merger.merge(repo, info, _FACTS)

    assert merger.is_current(repo, info)
    assert not merger.is_current(repo, make_info("lib", "1.0", 2))
