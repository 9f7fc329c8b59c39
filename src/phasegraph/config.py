"""Project configuration and logging setup for phasegraph."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from rich.console import Console
from rich.logging import RichHandler

from phasegraph.errors import InvalidProjectKeyError
from phasegraph.models import validate_project_key

ROOT_DIR_NAME = ".phasegraph"
CONFIG_FILE_NAME = "config.yml"
LOG_LEVEL_ENV = "PHASEGRAPH_LOG_LEVEL"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when config.yml cannot be used."""


@dataclass
class Config:
    default_project: str | None = None
    log_level: str = "WARNING"


def find_root(start: Path | None = None) -> Path | None:
    """Walk up from start (default: cwd) to find the .phasegraph directory."""
    path = start or Path.cwd()
    while path != path.parent:
        if (path / ROOT_DIR_NAME).is_dir():
            return path / ROOT_DIR_NAME
        path = path.parent
    return None


def load_config(root: Path) -> Config:
    """Load config.yml from the phasegraph root; missing file means defaults."""
    path = root / CONFIG_FILE_NAME
    data: dict = {}
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")

    default_project = data.get("default_project")
    if default_project is not None and not isinstance(default_project, str):
        raise ConfigError("default_project must be a string")
    if default_project is not None:
        try:
            validate_project_key(default_project)
        except InvalidProjectKeyError as e:
            raise ConfigError(str(e))

    log_level = str(os.environ.get(LOG_LEVEL_ENV) or data.get("log_level", "WARNING")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"Unknown log level: {log_level}")

    return Config(default_project=default_project, log_level=log_level)


def save_config(root: Path, config: Config) -> None:
    """Save config.yml."""
    data = {"default_project": config.default_project, "log_level": config.log_level}
    with open(root / CONFIG_FILE_NAME, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def configure_logging(level: str) -> None:
    """Send phasegraph log records to stderr at the given level."""
    logger = logging.getLogger("phasegraph")
    logger.setLevel(level)
    if not logger.handlers:
        handler = RichHandler(console=Console(stderr=True), show_time=False, show_path=False)
        logger.addHandler(handler)
