"""
Configuration
=============
Loads environment variables from .env file using python-dotenv, then layers
the operator's YAML config file on top.

Environment Variables:
    PIPEWATCH_ENDPOINT            : API host (default: openapi-rdc.aliyuncs.com)
    PIPEWATCH_TOKEN               : Personal access token sent as x-yunxiao-token
    PIPEWATCH_ORG_ID              : Organization id every request is scoped to
    PIPEWATCH_CONFIG              : YAML config path (default: ~/.config/pipewatch.yml)
    PIPEWATCH_POLL_INTERVAL_MS    : Live run poll interval (default: 5000)
    PIPEWATCH_MAX_FINISHED_POLLS  : Extra polls after a run turns terminal (default: 3)
    PIPEWATCH_PAGE_SIZE           : Items per gateway page (default: 30)
    PIPEWATCH_REQUEST_TIMEOUT     : Seconds before a gateway call is abandoned (default: 30)
    PIPEWATCH_INTER_JOB_PAUSE_MS  : Pause between job log fetches (default: 100)
    LOG_LEVEL                     : Root log level (default: INFO)

Config file keys:
    endpoint, personal_access_token, organization_id, editor, pager

Values in the config file win over the environment, so a shared .env can
carry defaults while each operator keeps credentials in their home directory.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from pipewatch.core.constants import (
    DEFAULT_ENDPOINT,
    DEFAULT_INTER_JOB_PAUSE_MS,
    DEFAULT_MAX_FINISHED_POLLS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_REQUEST_TIMEOUT,
)
from pipewatch.core.errors import ConfigError

logger = logging.getLogger(__name__)

load_dotenv()

ENDPOINT = os.getenv("PIPEWATCH_ENDPOINT", DEFAULT_ENDPOINT)
TOKEN = os.getenv("PIPEWATCH_TOKEN", "")
ORGANIZATION_ID = os.getenv("PIPEWATCH_ORG_ID", "")
CONFIG_PATH = os.getenv("PIPEWATCH_CONFIG", str(Path.home() / ".config" / "pipewatch.yml"))

POLL_INTERVAL_MS = int(os.getenv("PIPEWATCH_POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS))
MAX_FINISHED_POLLS = int(os.getenv("PIPEWATCH_MAX_FINISHED_POLLS", DEFAULT_MAX_FINISHED_POLLS))
PAGE_SIZE = int(os.getenv("PIPEWATCH_PAGE_SIZE", DEFAULT_PAGE_SIZE))
REQUEST_TIMEOUT = float(os.getenv("PIPEWATCH_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT))
INTER_JOB_PAUSE_MS = int(os.getenv("PIPEWATCH_INTER_JOB_PAUSE_MS", DEFAULT_INTER_JOB_PAUSE_MS))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# YAML key -> ConsoleSettings attribute
_FILE_KEYS = {
    "endpoint": "endpoint",
    "personal_access_token": "token",
    "organization_id": "organization_id",
    "editor": "editor",
    "pager": "pager",
}


@dataclass
class ConsoleSettings:
    """Resolved settings for one console session."""

    endpoint: str = ENDPOINT
    token: str = TOKEN
    organization_id: str = ORGANIZATION_ID
    editor: Optional[str] = None
    pager: Optional[str] = None
    poll_interval_ms: int = POLL_INTERVAL_MS
    max_finished_polls: int = MAX_FINISHED_POLLS
    page_size: int = PAGE_SIZE
    request_timeout: float = REQUEST_TIMEOUT
    inter_job_pause_ms: int = INTER_JOB_PAUSE_MS
    source: Optional[str] = field(default=None, compare=False)

    def validate(self) -> None:
        """Raise ConfigError when a required value is missing or out of range."""
        if not self.organization_id:
            raise ConfigError("organization_id is required (config file or PIPEWATCH_ORG_ID)")
        if not self.token:
            raise ConfigError("personal_access_token is required (config file or PIPEWATCH_TOKEN)")
        if self.page_size <= 0:
            raise ConfigError(f"page size must be positive, got {self.page_size}")
        if self.poll_interval_ms < 0 or self.max_finished_polls < 0:
            raise ConfigError("poll interval and max finished polls must not be negative")


def read_config_file(path: str) -> dict:
    """
    Read the YAML config file.

    Returns an empty dict when the file does not exist. A file that exists
    but cannot be parsed, or whose top level is not a mapping, raises
    ConfigError.
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        logger.debug("No config file at %s", config_path)
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_settings(path: Optional[str] = None) -> ConsoleSettings:
    """
    Build ConsoleSettings from the environment and the YAML config file.

    Parameters
    ----------
    path : str, optional
        Config file path. Defaults to PIPEWATCH_CONFIG.

    Returns
    -------
    ConsoleSettings
        Settings with file values taking precedence over the environment.
        Not validated; call ``validate()`` before talking to the service.
    """
    path = path or CONFIG_PATH
    data = read_config_file(path)
    settings = ConsoleSettings(source=str(Path(path).expanduser()))
    for key, value in data.items():
        attr = _FILE_KEYS.get(key)
        if attr is None:
            logger.warning("Ignoring unknown config key '%s' in %s", key, path)
            continue
        if value is None or value == "":
            continue
        setattr(settings, attr, str(value))
    return settings


def resolve_editor(settings: Optional[ConsoleSettings] = None) -> str:
    """Editor command: config file, then $VISUAL, then $EDITOR, then vim."""
    if settings and settings.editor:
        return settings.editor
    return os.getenv("VISUAL") or os.getenv("EDITOR") or "vim"


def resolve_pager(settings: Optional[ConsoleSettings] = None) -> str:
    """Pager command: config file, then $PAGER, then less."""
    if settings and settings.pager:
        return settings.pager
    return os.getenv("PAGER") or "less"
