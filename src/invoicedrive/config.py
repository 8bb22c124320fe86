"""Configuration loading for invoice archival."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Callable

import keyring

from invoicedrive.models import StorageConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "invoicedrive-google"
KEY_NAME = "access_token"
TOKEN_ENV_VAR = "GOOGLE_DRIVE_ACCESS_TOKEN"
DEFAULT_CONFIG_PATH = Path("config/storage_config.json")


def get_access_token() -> str:
    """Get the Drive OAuth access token: system keyring first, then env var.

    Returns:
        Access token string.

    Raises:
        RuntimeError: If no token found anywhere, with actionable instructions.
    """
    token = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if token:
        return token

    token = os.environ.get(TOKEN_ENV_VAR)
    if token:
        return token

    raise RuntimeError(
        "Google Drive access token not found.\n"
        "Set it with: invoicedrive config set-token YOUR_TOKEN\n"
        f"Or: export {TOKEN_ENV_VAR}=your-token"
    )


def load_storage_config(config_path: Path | None = None) -> StorageConfig:
    """Load storage configuration from JSON, falling back to defaults.

    Reads from ``config/storage_config.json`` when *config_path* is ``None``.
    Unrecognised keys are ignored.  If the file does not exist, returns a
    ``StorageConfig`` with defaults.

    Args:
        config_path: Optional explicit path to storage_config.json.

    Returns:
        StorageConfig populated from file.
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{config_path} must contain a JSON object")

    # Only recognised fields; a stray access token in the file is ignored
    field_names = {f.name for f in fields(StorageConfig)}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    ignored = set(data) - field_names
    if ignored:
        logger.debug("Ignoring unknown config keys: %s", ", ".join(sorted(ignored)))

    return StorageConfig(**kwargs)


def save_storage_config(config: StorageConfig, config_path: Path | None = None) -> Path:
    """Write *config* as JSON and return the path."""
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    data = asdict(config)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    return config_path


def config_provider(config_path: Path | None = None) -> Callable[[], StorageConfig]:
    """Return a callable that re-reads the config file on every call.

    The upload pipeline calls it once per upload, so switching storage on
    or off takes effect without restarting the process.
    """

    def _provider() -> StorageConfig:
        return load_storage_config(config_path)

    return _provider
