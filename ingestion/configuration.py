"""Configuration helpers for the ingestion engine."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

import config
from types_models import EngineConfig, RepositoryCredentials

logger = logging.getLogger(__name__)

SETTINGS_SECTION = "ingestion"

# Seed runtime defaults from the shared config module so callers can hydrate config quickly.
DEFAULT_CONFIG = EngineConfig(
    repository_url=config.REPOSITORY_URL,
    db_path=Path(config.DB_PATH),
    processing_cap=config.PROCESSING_CAP,
    fetch_retry_attempts=config.FETCH_RETRY_ATTEMPTS,
    fetch_retry_max_wait=config.FETCH_RETRY_MAX_WAIT,
    request_timeout=config.REQUEST_TIMEOUT,
    log_file=config.INGESTION_LOG_FILE,
    log_level=config.LOG_LEVEL,
)


def credentials_from_env(environ: Mapping[str, str] | None = None) -> RepositoryCredentials:
    """Read repository credentials from the configured environment variables."""
    env = os.environ if environ is None else environ
    username = env.get(config.USERNAME_ENV_VAR) or None
    password = env.get(config.PASSWORD_ENV_VAR) or None
    return RepositoryCredentials.model_validate(
        {"username": username, "password": password}
    )


def load_config(
    settings_path: Path | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Overlay the ``[ingestion]`` table of settings.toml on the defaults.

    A missing settings file is not an error; defaults apply. Credentials come
    from ``[ingestion.credentials]`` or, failing that, the environment.
    """
    path = Path(settings_path or config.SETTINGS_FILE)
    overrides: dict[str, Any] = {}
    if path.exists():
        with open(path, "rb") as handle:
            document = tomllib.load(handle)
        section = document.get(SETTINGS_SECTION, {})
        if not isinstance(section, dict):
            raise ValueError(f"[{SETTINGS_SECTION}] in {path} must be a table")
        overrides = dict(section)
        logger.info("Using settings from %s", path)
    else:
        logger.debug("No settings file at %s; using defaults", path)

    if not overrides.get("credentials"):
        env_credentials = credentials_from_env(environ)
        if env_credentials.username:
            overrides["credentials"] = env_credentials

    merged = {**DEFAULT_CONFIG.model_dump(), **overrides}
    cfg = EngineConfig.model_validate(merged)
    validate_config(cfg)
    return cfg


def validate_config(config_obj: EngineConfig) -> None:
    """Perform runtime validation on top of Pydantic checks."""
    if not config_obj.repository_url.startswith(("http://", "https://", "file://")):
        raise ValueError(
            f"repository_url must be an http(s) or file URL, got: {config_obj.repository_url}"
        )

    db_parent = config_obj.db_path.expanduser().parent
    if not db_parent.exists():
        # The graph database holds the watermark; a typo here would silently start from scratch.
        raise FileNotFoundError(
            f"Directory for graph database does not exist: {db_parent}. Update db_path in settings.toml."
        )

    if config_obj.download_dir is not None and config_obj.download_dir.exists():
        if not config_obj.download_dir.is_dir():
            raise NotADirectoryError(
                f"download_dir is not a directory: {config_obj.download_dir}"
            )

    if config_obj.credentials.password and not config_obj.credentials.username:
        raise ValueError("Repository password configured without a username")


__all__ = ["DEFAULT_CONFIG", "credentials_from_env", "load_config", "validate_config"]
