from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from conftest import T0, make_info
from pydantic import ValidationError

from types_models import ArtifactCoordinate, ArtifactInfo, CycleReport, EngineConfig


def test_coordinate_key_and_layout() -> None:
    plugin = ArtifactCoordinate(
        group_id="org.apache.maven.plugins",
        artifact_id="maven-jar-plugin",
        packaging="maven-plugin",
        version="3.3.0",
    )

    assert plugin.key == "org.apache.maven.plugins:maven-jar-plugin:maven-plugin:3.3.0"
    assert plugin.lineage_key == "org.apache.maven.plugins:maven-jar-plugin"
    assert plugin.repository_path == (
        "org/apache/maven/plugins/maven-jar-plugin/3.3.0/maven-jar-plugin-3.3.0.jar"
    )
    assert str(plugin) == plugin.key
    assert not plugin.is_snapshot


def test_classifier_is_part_of_identity() -> None:
    sources = make_info("lib", "1.0-SNAPSHOT", classifier="sources").coordinate
    blank = ArtifactCoordinate(
        group_id="org.example", artifact_id="lib", version="1.0-SNAPSHOT", classifier="  "
    )

    assert sources.key.endswith(":sources")
    assert sources.file_name == "lib-1.0-SNAPSHOT-sources.jar"
    assert blank.classifier is None
    assert sources.lineage_key != blank.lineage_key
    assert sources.is_snapshot


def test_coordinates_are_immutable_and_validated() -> None:
    coordinate = make_info("lib", "1.0").coordinate

    with pytest.raises(ValidationError):
        coordinate.version = "2.0"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        _ = ArtifactCoordinate(group_id="org.example", artifact_id="", version="1.0")


def test_last_modified_normalisation() -> None:
    coordinate = make_info("lib", "1.0").coordinate
    plus_two = timezone(timedelta(hours=2))

    assert ArtifactInfo(coordinate=coordinate, last_modified=1704110400000).last_modified == T0
    assert ArtifactInfo(coordinate=coordinate, last_modified="2024-01-01T12:00:00").last_modified == T0
    assert (
        ArtifactInfo(
            coordinate=coordinate, last_modified=datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)
        ).last_modified
        == T0
    )
    assert ArtifactInfo(coordinate=coordinate, last_modified="").last_modified is None


def test_cycle_report_record_buckets_by_category() -> None:
    report = CycleReport(repository_url="https://repo.example.org/maven2")

    report.record(make_info("a", "1"), "fetch", "not found (HTTP 404)", failed=True, category="resolution failed")
    report.record(make_info("b", "1"), "fetch", "timed out after 5s", failed=True, category="resolution failed")
    report.record(make_info("c", "1"), "scan", "no analyzer accepted the artifact", failed=False)

    assert report.failed == 2
    assert report.skipped == 1
    assert report.skip_reasons == {
        "resolution failed": 2,
        "no analyzer accepted the artifact": 1,
    }
    assert [d.coordinate for d in report.diagnostics] == [
        "org.example:a:jar:1",
        "org.example:b:jar:1",
        "org.example:c:jar:1",
    ]


def test_engine_config_converts_paths(tmp_path: Path) -> None:
    cfg = EngineConfig(
        repository_url="https://repo.example.org/maven2",
        db_path=str(tmp_path / "graph.db"),
        processing_cap=0,
        fetch_retry_attempts=1,
        fetch_retry_max_wait=1,
        request_timeout=1,
        download_dir=str(tmp_path),
        log_file="ingestion.log",
    )

    assert cfg.db_path == tmp_path / "graph.db"
    assert cfg.download_dir == tmp_path
    assert cfg.credentials.as_auth() is None
