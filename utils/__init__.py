"""
Utility modules shared by the ingestion engine.

This package contains:
- maven_version: Maven-style version ordering for artifact lineage
"""

from utils.maven_version import MavenVersion, compare_versions

__all__ = ["MavenVersion", "compare_versions"]
