"""Artifact resolution: coordinate in, scoped local file out.

The fetcher owns the retry policy and the lifetime of downloaded files; the
download service only knows how to turn a coordinate into bytes on disk.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

import config
from ingestion.errors import ResolutionError
from ingestion.models import DownloadService, canonical_repository_url
from types_models import ArtifactCoordinate, RepositoryCredentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedArtifact:
    """Downloaded artifact content, valid only inside ``ArtifactFetcher.fetch``."""

    coordinate: ArtifactCoordinate
    path: Path
    size: int

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ResolutionError) and exc.transient


class ArtifactFetcher:
    """Resolves coordinates to local files with retry and guaranteed cleanup."""

    def __init__(
        self,
        download_service: DownloadService,
        credentials: RepositoryCredentials,
        *,
        attempts: int = config.FETCH_RETRY_ATTEMPTS,
        max_wait: int = config.FETCH_RETRY_MAX_WAIT,
        wait: wait_base | None = None,
    ) -> None:
        super().__init__()
        self._service = download_service
        self._credentials = credentials
        self._attempts = attempts
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=max_wait)

    def _download(self, coordinate: ArtifactCoordinate) -> Path:
        try:
            result = self._service.download(coordinate, self._credentials)
        except ResolutionError:
            raise
        except Exception as exc:
            raise ResolutionError(coordinate, f"{type(exc).__name__}: {exc}") from exc

        path = Path(result)
        if not path.is_file():
            raise ResolutionError(coordinate, f"download produced no file at {path}")
        return path

    def _download_with_retry(self, coordinate: ArtifactCoordinate) -> Path:
        retryer = Retrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._attempts),
            wait=self._wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(self._download, coordinate)

    @contextmanager
    def fetch(self, coordinate: ArtifactCoordinate) -> Iterator[FetchedArtifact]:
        """Download ``coordinate`` and delete the local copy when the block exits.

        Raises ``ResolutionError`` once retries are exhausted or the failure is
        permanent.
        """
        path = self._download_with_retry(coordinate)
        try:
            yield FetchedArtifact(
                coordinate=coordinate, path=path, size=path.stat().st_size
            )
        finally:
            self._release(path)

    @staticmethod
    def _release(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("⚠️ Could not remove downloaded file %s: %s", path, exc)


class HttpDownloadService:
    """Downloads artifacts from a Maven-2 layout repository over HTTP(S)."""

    def __init__(
        self,
        repository_url: str,
        *,
        timeout: float = config.REQUEST_TIMEOUT,
        download_dir: Path | None = None,
        chunk_size: int = config.DOWNLOAD_CHUNK_SIZE,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__()
        self._base_url = canonical_repository_url(repository_url)
        self._timeout = timeout
        self._download_dir = download_dir
        self._chunk_size = chunk_size
        self._session = session or requests.Session()

    def artifact_url(self, coordinate: ArtifactCoordinate) -> str:
        return f"{self._base_url}/{coordinate.repository_path}"

    def download(
        self, coordinate: ArtifactCoordinate, credentials: RepositoryCredentials
    ) -> Path:
        url = self.artifact_url(coordinate)
        try:
            response = self._session.get(
                url,
                auth=credentials.as_auth(),
                timeout=self._timeout,
                stream=True,
            )
        except requests.exceptions.Timeout as exc:
            raise ResolutionError(
                coordinate, f"timed out after {self._timeout}s", transient=True
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise ResolutionError(
                coordinate, f"connection failed: {exc}", transient=True
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ResolutionError(coordinate, f"request failed: {exc}") from exc

        with response:
            status_code = response.status_code
            if status_code in (401, 403):
                raise ResolutionError(
                    coordinate, f"authentication failed (HTTP {status_code})"
                )
            if status_code in (404, 410):
                raise ResolutionError(coordinate, f"not found (HTTP {status_code})")
            if status_code >= 500:
                raise ResolutionError(
                    coordinate, f"server error (HTTP {status_code})", transient=True
                )
            if status_code != 200:
                raise ResolutionError(
                    coordinate, f"unexpected response (HTTP {status_code})"
                )
            return self._write_body(coordinate, response)

    def _write_body(
        self, coordinate: ArtifactCoordinate, response: requests.Response
    ) -> Path:
        if self._download_dir is not None:
            self._download_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            prefix=f"{coordinate.artifact_id}-",
            suffix=f".{coordinate.extension}",
            dir=self._download_dir,
        )
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in response.iter_content(chunk_size=self._chunk_size):
                    if chunk:
                        _ = handle.write(chunk)
        except (requests.exceptions.RequestException, OSError) as exc:
            path.unlink(missing_ok=True)
            raise ResolutionError(
                coordinate, f"download interrupted: {exc}", transient=True
            ) from exc
        logger.debug("Downloaded %s to %s", coordinate, path)
        return path

    def close(self) -> None:
        self._session.close()


__all__ = ["ArtifactFetcher", "FetchedArtifact", "HttpDownloadService"]
