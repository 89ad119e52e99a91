"""
Constants
Centralised storage for run statuses, trigger modes, polling defaults and API paths.
"""
from enum import Enum


class RunStatus(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    UNKNOWN = "UNKNOWN"


TERMINAL_STATUSES = frozenset({RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.CANCELED})

# Statuses that keep a historical run eligible for auto-refresh
ACTIVE_STATUSES = frozenset({RunStatus.RUNNING, RunStatus.QUEUED})

# Server spellings folded onto RunStatus
STATUS_ALIASES = {
    "SUCCESS": RunStatus.SUCCESS,
    "FAILED": RunStatus.FAILED,
    "FAIL": RunStatus.FAILED,
    "CANCELED": RunStatus.CANCELED,
    "CANCELLED": RunStatus.CANCELED,
    "RUNNING": RunStatus.RUNNING,
    "QUEUED": RunStatus.QUEUED,
    "WAITING": RunStatus.QUEUED,
    "INIT": RunStatus.QUEUED,
}

TRIGGER_MODES = {
    1: "MANUAL",
    2: "SCHEDULE",
    3: "PUSH",
    5: "PIPELINE",
    6: "WEBHOOK",
}

# Server-side filter used by the "RUNNING+WAITING" toggle
RUNNING_WAITING = ("RUNNING", "WAITING")

DEFAULT_ENDPOINT = "openapi-rdc.aliyuncs.com"
API_PREFIX = "/oapi/v1/flow/organizations"
AUTH_HEADER = "x-yunxiao-token"
VERSION = "0.1.0"
USER_AGENT = f"pipewatch/{VERSION}"

DEFAULT_PAGE_SIZE = 30
RUN_HISTORY_PAGE_SIZE = 30
DEFAULT_POLL_INTERVAL_MS = 5000
DEFAULT_MAX_FINISHED_POLLS = 3
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_INTER_JOB_PAUSE_MS = 100

VM_DEPLOY_ACTION = "GetVMDeployOrder"

SEPARATOR_WIDTH = 80
