# ======================================
# Config for the repository ingestion engine
# Default: one remote repository synced into a local SQLite graph
# ======================================

from typing import Literal

# Type definitions
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

# Remote repository
REPOSITORY_URL: str = "https://repo.maven.apache.org/maven2"
REQUEST_TIMEOUT: int = 60

# Credential environment variables (read only when settings.toml has none)
USERNAME_ENV_VAR: str = "REPO_USERNAME"
PASSWORD_ENV_VAR: str = "REPO_PASSWORD"

# Graph store
DB_PATH: str = "knowledge_graph.db"

# Run controller
# Maximum artifacts merged per cycle; 0 disables the cap.
PROCESSING_CAP: int = 1000

# Artifact fetch retries (exponential backoff between attempts)
FETCH_RETRY_ATTEMPTS: int = 3
FETCH_RETRY_MAX_WAIT: int = 5
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024

# File paths and logging
SETTINGS_FILE: str = "settings.toml"
INGESTION_LOG_FILE: str = "ingestion.log"
LOG_LEVEL: LogLevel = "INFO"


def validate_config() -> None:
    """Validate configuration values at startup."""
    positive_int_configs = [
        ("REQUEST_TIMEOUT", REQUEST_TIMEOUT),
        ("FETCH_RETRY_ATTEMPTS", FETCH_RETRY_ATTEMPTS),
        ("FETCH_RETRY_MAX_WAIT", FETCH_RETRY_MAX_WAIT),
        ("DOWNLOAD_CHUNK_SIZE", DOWNLOAD_CHUNK_SIZE),
    ]

    for config_name, config_val in positive_int_configs:
        if not isinstance(config_val, int) or config_val <= 0:
            raise ValueError(
                f"{config_name} must be a positive integer, got: {config_val}"
            )

    if not isinstance(PROCESSING_CAP, int) or PROCESSING_CAP < 0:
        raise ValueError(
            f"PROCESSING_CAP must be zero (unlimited) or a positive integer, got: {PROCESSING_CAP}"
        )

    string_configs = [
        ("REPOSITORY_URL", REPOSITORY_URL),
        ("DB_PATH", DB_PATH),
        ("SETTINGS_FILE", SETTINGS_FILE),
        ("INGESTION_LOG_FILE", INGESTION_LOG_FILE),
        ("USERNAME_ENV_VAR", USERNAME_ENV_VAR),
        ("PASSWORD_ENV_VAR", PASSWORD_ENV_VAR),
    ]

    for config_name, config_val in string_configs:
        if not isinstance(config_val, str) or not config_val.strip():
            raise ValueError(
                f"{config_name} must be a non-empty string, got: {config_val}"
            )

    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
    if LOG_LEVEL not in valid_levels:
        raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got: {LOG_LEVEL}")


# Validate on import
validate_config()
