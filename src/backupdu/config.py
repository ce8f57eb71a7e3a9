"""Configuration loading for backupdu."""

import json
import logging
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BACKUPDU_CONFIG"
SYSTEM_CONFIG_FILE = Path("/etc/backupdu/config.json")
USER_CONFIG_FILE = Path("~/.backupdu/config.json")


class ProbeKind(str, Enum):
    """Backend used to list directories and measure their size."""

    COMMAND = "command"  # find/du under the bounded runner
    NATIVE = "native"  # os.scandir walk with a byte counter


class Settings(BaseModel):
    """Tunables for scanning, measuring and caching."""

    default_root: str = Field("/backup", description="Root scanned when none is given")
    cache_dir: Path = Field(
        Path("/var/cache/backup-disk-usage"), description="Directory for cache and lock files"
    )
    cache_ttl: int = Field(300, ge=0, description="Seconds a cached scan stays fresh")
    cache_retention: int = Field(
        3600, ge=0, description="Seconds after which the sweep deletes cache files"
    )
    list_timeout: float = Field(10.0, gt=0, description="Bound for one directory listing")
    du_timeout: float = Field(30.0, gt=0, description="Bound for one directory size computation")
    archive_timeout: float = Field(60.0, gt=0, description="Bound for one archive listing")
    kill_grace: float = Field(2.0, ge=0, description="Seconds between SIGTERM and SIGKILL")
    max_items: int = Field(4000, gt=0, description="Cap on entries taken from one listing")
    low_priority: bool = Field(True, description="Run external commands under nice/ionice")
    probe: ProbeKind = Field(ProbeKind.COMMAND, description="Listing/size backend")
    workers: int = Field(1, ge=1, le=8, description="Targets measured concurrently")
    scan_deadline: float = Field(900.0, gt=0, description="Global ceiling for one scan")


def config_candidates(path: str | Path | None = None) -> list[Path]:
    """Config files to try, most specific first."""
    if path:
        return [Path(path).expanduser()]

    candidates = []
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(SYSTEM_CONFIG_FILE)
    candidates.append(USER_CONFIG_FILE.expanduser())
    return candidates


def _load_config(config_file: Path) -> dict | None:
    """Read one JSON config file, None if missing or unreadable."""
    if not config_file.is_file():
        return None

    try:
        with open(config_file) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_file, e)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level must be an object", config_file)
        return None
    return data


def load_settings(path: str | Path | None = None) -> Settings:
    """
    Load settings from the first config file that exists.

    Missing, malformed or invalid files fall back to defaults.

    Args:
        path: Explicit config file, overriding the environment and defaults

    Returns:
        Settings instance
    """
    for candidate in config_candidates(path):
        data = _load_config(candidate)
        if data is None:
            continue
        try:
            settings = Settings.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid settings in %s, using defaults: %s", candidate, e)
            return Settings()
        logger.debug("Loaded settings from %s", candidate)
        return settings

    return Settings()
