"""
Output Formatter
================
THE SINGLE SOURCE OF TRUTH for operator-facing text.

DETERMINISM CONTRACT:
  - This module NEVER performs I/O.
  - This module NEVER reads environment variables.
  - Given the same inputs, it ALWAYS returns the exact same string
    (times are rendered in the local timezone of the process).

Transcript layout for one fetch pass:

    Pipeline Run Logs - Run ID: <runId>
    Pipeline ID: <pipelineId>
    Status: <status>
    =================================================================================

    Stage: <name> (<index>)
    -------------------------------------------------------------

    Job #1: <name> (ID: <id>)
    Job Sign: <sign>
    Status: <status>
    Start Time: <time>
    End Time: <time>
    ==================================================
    <log text | "No logs available for this job." | inline error>
    ================================================================================
"""
from datetime import datetime
from typing import Optional

from pipewatch.core.constants import SEPARATOR_WIDTH
from pipewatch.models.job import DeployMachine, DeployOrder, JobRecord, MachineLog
from pipewatch.models.pipeline import PipelineSummary
from pipewatch.models.run import AutoRefreshState, RunDetail, RunRecord, Stage

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_JOB_LOGS = "No logs available for this job.\n"
NO_MACHINE_LOGS = "No deployment logs available for this machine.\n"
NO_MACHINES = "No machines found in this deployment.\n"
FETCHING_RUN = "Fetching logs for run {run_id}..."
REFRESH_HINT = (
    "Auto-refreshing every {seconds} seconds. Press 'r' to refresh manually, "
    "'q' to return, 'e' to edit in editor, 'v' to view in pager.\n"
)


# ---------------------------------------------------------------------------
# Times
# ---------------------------------------------------------------------------

def format_time(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime(TIME_FORMAT)


def format_duration(start: Optional[datetime], end: Optional[datetime]) -> str:
    """Compact run duration: ``1.5h``, ``2.3m``, ``42s``, ``Running...`` or ``-``."""
    if start is None:
        return "-"
    if end is None:
        return "Running..."
    seconds = (end - start).total_seconds()
    if seconds > 3600:
        return f"{seconds / 3600:.1f}h"
    if seconds > 60:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.0f}s"


# ---------------------------------------------------------------------------
# Transcript pieces
# ---------------------------------------------------------------------------

def run_header(detail: RunDetail) -> str:
    run = detail.run
    return (
        f"Pipeline Run Logs - Run ID: {run.run_id}\n"
        f"Pipeline ID: {run.pipeline_id}\n"
        f"Status: {run.display_status}\n"
        + "=" * (SEPARATOR_WIDTH + 1)
        + "\n\n"
    )


def stage_header(stage: Stage) -> str:
    return f"Stage: {stage.name} ({stage.index})\n" + "-" * 61 + "\n\n"


def job_header(number: int, job: JobRecord) -> str:
    lines = [
        f"Job #{number}: {job.name} (ID: {job.id})",
        f"Job Sign: {job.job_sign}",
        f"Status: {job.status}",
    ]
    if job.started_at is not None:
        lines.append(f"Start Time: {format_time(job.started_at)}")
    if job.ended_at is not None:
        lines.append(f"End Time: {format_time(job.ended_at)}")
    lines.append("=" * 50)
    return "\n".join(lines) + "\n"


def job_footer() -> str:
    return "\n" + "=" * SEPARATOR_WIDTH + "\n\n"


def log_text(text: str) -> str:
    if not text:
        return NO_JOB_LOGS
    return text if text.endswith("\n") else text + "\n"


def job_log_error(job_id: str, error: Exception) -> str:
    return f"Error fetching logs for job {job_id}: {error}\n"


def deploy_order_missing(job: JobRecord, error: Exception) -> str:
    """Explain a VM deployment job whose order id could not be resolved."""
    text = f"Error extracting deployOrderId from job actions: {error}\n"
    status = job.status.upper()
    if status in ("RUNNING", "QUEUED"):
        text += "Deployment is still in progress. Deploy order information will be available once the deployment starts.\n"
    elif status == "FAILED":
        text += "Deployment job failed. No deploy order information available.\n"
    else:
        text += "Deploy order information is not available for this job.\n"
    return text


def deploy_order_error(deploy_order_id: str, error: Exception) -> str:
    return (
        f"Error fetching VM deploy order {deploy_order_id}: {error}\n"
        "Unable to retrieve deployment details at this time.\n"
    )


def deploy_order_block(order: DeployOrder) -> str:
    text = (
        f"Deploy Order ID: {order.deploy_order_id}\n"
        f"Deploy Status: {order.status}\n"
        f"Current Batch: {order.current_batch}/{order.total_batch}\n"
        f"Host Group ID: {order.host_group_id}\n"
        + "-" * 40
        + "\n"
    )
    if not order.machines:
        text += NO_MACHINES
    return text


def machine_header(number: int, machine: DeployMachine) -> str:
    return (
        f"Machine #{number}: {machine.ip} (SN: {machine.machine_sn})\n"
        f"Machine Status: {machine.status}, Client Status: {machine.client_status}\n"
        f"Batch: {machine.batch_num}\n"
        + "." * 30
        + "\n"
    )


def machine_log_block(log: MachineLog) -> str:
    lines = []
    if log.deploy_begin_time:
        lines.append(f"Deploy Begin Time: {log.deploy_begin_time}")
    if log.deploy_end_time:
        lines.append(f"Deploy End Time: {log.deploy_end_time}")
    if log.region:
        lines.append(f"Region: {log.region}")
    if log.log_path:
        lines.append(f"Log Path: {log.log_path}")
    lines.append("Deploy Log:")
    text = "\n".join(lines) + "\n"
    if not log.deploy_log:
        return text + NO_MACHINE_LOGS + "\n"
    body = log.deploy_log if log.deploy_log.endswith("\n") else log.deploy_log + "\n"
    return text + body + "\n"


def machine_log_error(machine_sn: str, error: Exception) -> str:
    return f"Error fetching machine log for {machine_sn}: {error}\n\n"


# ---------------------------------------------------------------------------
# Status bar and lists
# ---------------------------------------------------------------------------

def auto_refresh_label(state: AutoRefreshState) -> str:
    if not state.enabled:
        return "OFF"
    if state.remaining is not None:
        return f"ON ({state.remaining} more)"
    return "ON"


def status_bar(status: str, state: AutoRefreshState) -> str:
    return f"Status: {status or '-'} | Auto-refresh: {auto_refresh_label(state)}"


def refresh_hint(poll_interval_ms: int) -> str:
    return REFRESH_HINT.format(seconds=max(1, round(poll_interval_ms / 1000)))


def collection_error(what: str, error: Exception) -> str:
    return f"Error fetching {what}: {error}"


def pipelines_title(group_name: Optional[str] = None, running_only: bool = False, query: str = "") -> str:
    title = f"Pipelines in '{group_name}'" if group_name else "Pipelines"
    if running_only:
        title += " (RUNNING+WAITING)"
    if query:
        title += f" [search: {query}]"
    return title


def run_history_title(pipeline_name: str, page: int, total_pages: int) -> str:
    return (
        f"Run History - {pipeline_name} (Page {page}/{max(total_pages, 1)}) "
        "[/] to navigate, 0 to go to first page"
    )


def pipeline_row(pipeline: PipelineSummary) -> tuple[str, str, str, str]:
    return (
        pipeline.name,
        pipeline.last_run_status or pipeline.status or "-",
        pipeline.creator or "-",
        format_time(pipeline.updated_at or pipeline.created_at),
    )


def run_row(number: int, run: RunRecord) -> tuple[str, str, str, str, str, str]:
    return (
        f"#{number}",
        run.display_status,
        run.trigger_mode or "-",
        format_time(run.started_at),
        format_time(run.finished_at),
        format_duration(run.started_at, run.finished_at),
    )


def trigger_summary(pipeline_name: str, run_id: str, repositories: dict[str, str]) -> str:
    text = f"Pipeline '{pipeline_name}' triggered successfully!\nRun ID: {run_id}\n"
    for repo, branch in repositories.items():
        text += f"Repository: {repo}\nBranch: {branch}\n"
    return text
