"""
Job Models
Jobs inside a run stage, plus the VM deployment records fetched for
deployment jobs.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict


class JobKind(str, Enum):
    STANDARD = "STANDARD"
    VM_DEPLOYMENT = "VM_DEPLOYMENT"


class JobAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = ""
    display_type: str = ""
    data: str = ""
    params: Dict[str, Any] = {}


class JobRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    job_sign: str = ""
    status: str = ""
    started_at: datetime | None = None
    ended_at: datetime | None = None
    kind: JobKind = JobKind.STANDARD
    actions: List[JobAction] = []


class DeployMachine(BaseModel):
    model_config = ConfigDict(frozen=True)

    ip: str = ""
    machine_sn: str
    status: str = ""
    client_status: str = ""
    batch_num: int = 0


class DeployOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    deploy_order_id: str
    status: str = ""
    current_batch: int = 0
    total_batch: int = 0
    host_group_id: str = ""
    machines: List[DeployMachine] = []


class MachineLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    deploy_begin_time: str = ""
    deploy_end_time: str = ""
    region: str = ""
    log_path: str = ""
    deploy_log: str = ""
