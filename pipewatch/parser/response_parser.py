"""
Response Parser
===============
Normalization boundary between the remote pipeline service and the rest of
pipewatch. Every function here takes decoded JSON (or raw text) and returns
typed records, or raises MalformedResponseError listing what was actually
present so the operator can see which shape the service sent.

Known shape drift handled here:
    - ids arrive as ints, floats (``123.0``) or strings
    - list endpoints wrap rows as a bare list, ``{"data": [...]}``,
      ``{"data": {"result"|"items": [...]}}`` or ``{"result": [...]}``
    - group-pipeline rows use ``pipelineId``/``pipelineName``/``gmtCreate``
      where the main list uses ``id``/``name``/``createTime``
    - timestamps are epoch milliseconds, numeric strings or ISO-8601
    - the trigger endpoint answers with a bare number, a quoted string or
      an object carrying the run id under one of several keys
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pipewatch.core.constants import STATUS_ALIASES, TRIGGER_MODES, VM_DEPLOY_ACTION, RunStatus
from pipewatch.core.errors import MalformedResponseError, StateError
from pipewatch.models.job import (
    DeployMachine,
    DeployOrder,
    JobAction,
    JobKind,
    JobRecord,
    MachineLog,
)
from pipewatch.models.pipeline import PipelineGroup, PipelineSummary
from pipewatch.models.run import RunDetail, RunRecord, Stage

logger = logging.getLogger(__name__)

_LIST_KEYS = ("result", "items", "list", "records")
_ENVELOPE_KEYS = frozenset({"data", "success", "code", "message", "errorCode", "errorMessage", "requestId"})


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------

def _keys(value: Any) -> List[str]:
    return list(value.keys()) if isinstance(value, Mapping) else [type(value).__name__]


def to_id(value: Any) -> Optional[str]:
    """Render an id that may be int, float or string as a plain string."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse epoch milliseconds, a numeric string or an ISO-8601 string.

    Zero, empty and unparseable values return None; the service uses 0 for
    "not yet". So do values no datetime can hold (microsecond epochs,
    "nan", "inf").
    """
    if value in (None, "", 0) or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                logger.debug("Unparseable timestamp %r", text)
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.debug("Out of range timestamp %r", value)
            return None
    return None


def parse_run_status(raw: Any) -> RunStatus:
    if not isinstance(raw, str):
        return RunStatus.UNKNOWN
    return STATUS_ALIASES.get(raw.strip().upper(), RunStatus.UNKNOWN)


def parse_trigger_mode(value: Any) -> str:
    """Map the numeric trigger mode to its name; strings pass through."""
    if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
        return value.strip().upper()
    if value is None or value == "":
        return ""
    mode = _to_int(value, default=-1)
    return TRIGGER_MODES.get(mode, f"UNKNOWN_{mode}")


def parse_group_id(text: Any) -> int:
    """Group ids must be integers; anything else is a caller error."""
    try:
        return int(str(text).strip())
    except (TypeError, ValueError):
        raise StateError(f"Invalid group ID '{text}'") from None


def _creator(raw: Mapping[str, Any]) -> str:
    creator = _first(raw, "creator", "creatorAccountId", "creatorName")
    if isinstance(creator, Mapping):
        return str(_first(creator, "name", "username", "displayName", "id") or "")
    return to_id(creator) or ""


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

def unwrap_list(payload: Any, what: str) -> List[Dict[str, Any]]:
    """Return the row list from any of the list envelopes the service uses."""
    rows: Any = None
    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, list):
            rows = data
        elif isinstance(data, Mapping):
            rows = _first(data, *_LIST_KEYS)
        if rows is None:
            rows = _first(payload, *_LIST_KEYS)
        if rows is None and payload.get("data", "missing") is None:
            rows = []
    if not isinstance(rows, list):
        raise MalformedResponseError(f"Unrecognized {what} list response", _keys(payload))
    return [row for row in rows if isinstance(row, Mapping)]


def unwrap_object(payload: Any, what: str) -> Dict[str, Any]:
    """Detail endpoints sometimes wrap the object in ``data``."""
    if isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, Mapping) and set(payload) <= _ENVELOPE_KEYS:
            return dict(data)
        return dict(payload)
    raise MalformedResponseError(f"Unrecognized {what} response", _keys(payload))


# ---------------------------------------------------------------------------
# Pipelines and groups
# ---------------------------------------------------------------------------

def parse_pipeline(raw: Mapping[str, Any]) -> PipelineSummary:
    pipeline_id = to_id(_first(raw, "id", "pipelineId"))
    if pipeline_id is None:
        raise MalformedResponseError("Pipeline row has no id", _keys(raw))

    last_run = raw.get("lastRun")
    last_run_status = ""
    if isinstance(last_run, Mapping):
        last_run_status = str(last_run.get("status") or "")
    if not last_run_status:
        last_run_status = str(_first(raw, "lastRunStatus", "latestRunStatus") or "")

    return PipelineSummary(
        id=pipeline_id,
        name=str(_first(raw, "name", "pipelineName") or pipeline_id),
        status=str(raw.get("status") or ""),
        last_run_status=last_run_status,
        created_at=parse_timestamp(_first(raw, "createTime", "gmtCreate", "createdAt")),
        updated_at=parse_timestamp(_first(raw, "updateTime", "gmtModified", "updatedAt")),
        creator=_creator(raw),
    )


def parse_pipelines(payload: Any) -> List[PipelineSummary]:
    return [parse_pipeline(row) for row in unwrap_list(payload, "pipeline")]


def parse_group(raw: Mapping[str, Any]) -> PipelineGroup:
    group_id = to_id(_first(raw, "id", "groupId"))
    if group_id is None:
        raise MalformedResponseError("Pipeline group row has no id", _keys(raw))
    return PipelineGroup(id=group_id, name=str(_first(raw, "name", "groupName") or group_id))


def parse_groups(payload: Any) -> List[PipelineGroup]:
    return [parse_group(row) for row in unwrap_list(payload, "pipeline group")]


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def parse_run(raw: Mapping[str, Any], pipeline_id: str) -> RunRecord:
    run_id = to_id(_first(raw, "pipelineRunId", "runId", "id"))
    if run_id is None:
        raise MalformedResponseError("Run row has no run id", _keys(raw))
    raw_status = str(raw.get("status") or "")
    return RunRecord(
        run_id=run_id,
        pipeline_id=to_id(raw.get("pipelineId")) or pipeline_id,
        status=parse_run_status(raw_status),
        raw_status=raw_status,
        trigger_mode=parse_trigger_mode(raw.get("triggerMode")),
        started_at=parse_timestamp(_first(raw, "startTime", "createTime")),
        finished_at=parse_timestamp(_first(raw, "endTime", "finishTime")),
    )


def parse_runs(payload: Any, pipeline_id: str) -> List[RunRecord]:
    return [parse_run(row, pipeline_id) for row in unwrap_list(payload, "pipeline run")]


def parse_action(raw: Mapping[str, Any]) -> JobAction:
    params = raw.get("params")
    data = raw.get("data")
    return JobAction(
        type=str(raw.get("type") or ""),
        display_type=str(raw.get("displayType") or ""),
        data=data if isinstance(data, str) else (json.dumps(data) if data else ""),
        params=dict(params) if isinstance(params, Mapping) else {},
    )


def parse_job(raw: Mapping[str, Any]) -> JobRecord:
    job_id = to_id(raw.get("id"))
    if job_id is None:
        raise MalformedResponseError("Job has no id", _keys(raw))
    actions = [parse_action(a) for a in raw.get("actions") or [] if isinstance(a, Mapping)]
    kind = JobKind.VM_DEPLOYMENT if any(a.type == VM_DEPLOY_ACTION for a in actions) else JobKind.STANDARD
    return JobRecord(
        id=job_id,
        name=str(raw.get("name") or job_id),
        job_sign=str(raw.get("jobSign") or ""),
        status=str(raw.get("status") or ""),
        started_at=parse_timestamp(raw.get("startTime")),
        ended_at=parse_timestamp(raw.get("endTime")),
        kind=kind,
        actions=actions,
    )


def parse_run_detail(payload: Any, pipeline_id: str, run_id: str) -> RunDetail:
    """
    Parse the run detail response into a RunDetail.

    Stages and jobs keep server order. A stage's jobs live under
    ``stageInfo.jobs``; a stage without them is kept with no jobs.
    """
    raw = unwrap_object(payload, "run detail")
    if "status" not in raw and "stages" not in raw:
        raise MalformedResponseError("Run detail has neither status nor stages", _keys(raw))

    raw_status = str(raw.get("status") or "")
    run = RunRecord(
        run_id=to_id(raw.get("pipelineRunId")) or run_id,
        pipeline_id=to_id(raw.get("pipelineId")) or pipeline_id,
        status=parse_run_status(raw_status),
        raw_status=raw_status,
        trigger_mode=parse_trigger_mode(raw.get("triggerMode")),
        started_at=parse_timestamp(_first(raw, "startTime", "createTime")),
        finished_at=parse_timestamp(_first(raw, "endTime", "finishTime")),
    )

    stages: List[Stage] = []
    raw_stages = raw.get("stages") or []
    if not isinstance(raw_stages, list):
        raise MalformedResponseError("Run detail 'stages' is not a list", _keys(raw))
    for position, stage_raw in enumerate(raw_stages):
        if not isinstance(stage_raw, Mapping):
            continue
        info = stage_raw.get("stageInfo") if isinstance(stage_raw.get("stageInfo"), Mapping) else {}
        jobs = [parse_job(j) for j in info.get("jobs") or [] if isinstance(j, Mapping)]
        index = stage_raw.get("index")
        stages.append(
            Stage(
                name=str(_first(stage_raw, "name") or info.get("name") or f"Stage {position + 1}"),
                index=str(index) if index not in (None, "") else str(position),
                jobs=jobs,
            )
        )
    return RunDetail(run=run, stages=stages)


def parse_run_id(body: str) -> str:
    """
    Extract the new run id from the trigger response body.

    Accepts a bare number (``12345``), a quoted string (``"12345"``) or a
    JSON object with the id under ``data``, ``runId``, ``pipelineRunId``
    or ``id``.
    """
    text = (body or "").strip()
    if not text:
        raise MalformedResponseError("Empty trigger response")
    try:
        decoded = json.loads(text)
    except ValueError:
        decoded = text.strip('"')

    candidate: Any = decoded
    if isinstance(decoded, Mapping):
        candidate = _first(decoded, "data", "runId", "pipelineRunId", "id")
        if isinstance(candidate, Mapping):
            candidate = _first(candidate, "runId", "pipelineRunId", "id")
    run_id = to_id(candidate)
    if run_id is None:
        raise MalformedResponseError("Trigger response carries no run id", _keys(decoded))
    return run_id


def repositories_from_latest_run(payload: Any) -> Dict[str, str]:
    """
    Repository URL -> branch pairs from the latest run's sources.

    Newer responses nest them as ``sources[].data.repo``/``.branch``;
    older ones put ``repoUrl`` and ``branch``/``branchName`` on the source
    itself. Missing branches default to master.
    """
    raw = unwrap_object(payload, "latest run")
    repositories: Dict[str, str] = {}
    for source in raw.get("sources") or []:
        if not isinstance(source, Mapping):
            continue
        data = source.get("data")
        if isinstance(data, Mapping) and isinstance(data.get("repo"), str):
            repositories[data["repo"]] = str(data.get("branch") or "master")
        elif isinstance(source.get("repoUrl"), str):
            repositories[source["repoUrl"]] = str(_first(source, "branch", "branchName") or "master")
    return repositories


# ---------------------------------------------------------------------------
# Logs and VM deployments
# ---------------------------------------------------------------------------

def parse_job_log(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    raw = unwrap_object(payload, "job log")
    content = _first(raw, "content", "log", "logs")
    if content is None:
        if "content" in raw:
            return ""
        raise MalformedResponseError("Job log response has no content", _keys(raw))
    return str(content)


def _deploy_order_id_from_json(data: str) -> Optional[str]:
    try:
        decoded = json.loads(data)
    except ValueError:
        return None
    if not isinstance(decoded, Mapping):
        return None
    for container in (decoded.get("data"), decoded):
        if not isinstance(container, Mapping):
            continue
        value = container.get("deployOrderId")
        if isinstance(value, Mapping):
            value = value.get("id")
        found = to_id(value)
        if found:
            return found
    return None


def extract_deploy_order_id(actions: List[JobAction]) -> str:
    """
    Find the deployment order id of a VM deployment job.

    The ``GetVMDeployOrder`` action carries it in ``params.deployOrderId``;
    older runs only have it inside the action's ``data`` JSON string.
    """
    if not actions:
        raise MalformedResponseError("no actions found in job")
    for action in actions:
        if action.type != VM_DEPLOY_ACTION:
            continue
        found = to_id(action.params.get("deployOrderId"))
        if found:
            return found
        if action.data:
            found = _deploy_order_id_from_json(action.data)
            if found:
                return found
        raise MalformedResponseError(
            "deployOrderId not found in GetVMDeployOrder action",
            list(action.params.keys()) + (["data"] if action.data else []),
        )
    raise MalformedResponseError("GetVMDeployOrder action not found", [a.type for a in actions])


def parse_deploy_order(payload: Any) -> DeployOrder:
    raw = unwrap_object(payload, "deploy order")
    order_id = to_id(raw.get("deployOrderId"))
    if order_id is None:
        raise MalformedResponseError("Deploy order has no deployOrderId", _keys(raw))
    info = raw.get("deployMachineInfo") if isinstance(raw.get("deployMachineInfo"), Mapping) else {}
    machines = []
    for machine in info.get("deployMachines") or []:
        if not isinstance(machine, Mapping) or not machine.get("machineSn"):
            continue
        machines.append(
            DeployMachine(
                ip=str(machine.get("ip") or ""),
                machine_sn=str(machine["machineSn"]),
                status=str(machine.get("status") or ""),
                client_status=str(machine.get("clientStatus") or ""),
                batch_num=_to_int(machine.get("batchNum")),
            )
        )
    return DeployOrder(
        deploy_order_id=order_id,
        status=str(raw.get("status") or ""),
        current_batch=_to_int(raw.get("currentBatch")),
        total_batch=_to_int(raw.get("totalBatch")),
        host_group_id=to_id(info.get("hostGroupId")) or "",
        machines=machines,
    )


def parse_machine_log(payload: Any) -> MachineLog:
    raw = unwrap_object(payload, "machine log")
    return MachineLog(
        deploy_begin_time=str(raw.get("deployBeginTime") or ""),
        deploy_end_time=str(raw.get("deployEndTime") or ""),
        region=str(raw.get("aliyunRegion") or ""),
        log_path=str(raw.get("deployLogPath") or ""),
        deploy_log=str(raw.get("deployLog") or ""),
    )


# ---------------------------------------------------------------------------
# Pagination headers
# ---------------------------------------------------------------------------

def parse_page_headers(headers: Mapping[str, str]) -> tuple[Optional[int], Optional[int]]:
    """Return (page, total_pages) from ``x-page``/``x-total-pages``, None when absent."""

    def _header_int(name: str) -> Optional[int]:
        value = headers.get(name)
        if value is None or str(value).strip() == "":
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            logger.warning("Ignoring non-numeric %s header: %r", name, value)
            return None

    return _header_int("x-page"), _header_int("x-total-pages")
