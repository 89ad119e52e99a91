"""
View State
Tagged navigation states. Each variant carries exactly the data its view
needs; the coordinator holds one of them at a time.
"""
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class PipelineList:
    running_only: bool = False


@dataclass(frozen=True)
class GroupList:
    pass


@dataclass(frozen=True)
class PipelinesInGroup:
    group_id: int
    group_name: str
    running_only: bool = False


# Views a RunHistory or LogView can hand control back to
ReturnTarget = Union[PipelineList, PipelinesInGroup]


@dataclass(frozen=True)
class RunHistory:
    pipeline_id: str
    pipeline_name: str
    return_to: ReturnTarget


@dataclass(frozen=True)
class LogView:
    pipeline_id: str
    pipeline_name: str
    run_id: str
    freshly_triggered: bool
    return_to: Union[ReturnTarget, RunHistory]


ViewState = Union[PipelineList, GroupList, PipelinesInGroup, RunHistory, LogView]


def describe(state: ViewState) -> str:
    """Short label for logs and window titles."""
    if isinstance(state, PipelineList):
        return "pipelines (running)" if state.running_only else "pipelines"
    if isinstance(state, GroupList):
        return "groups"
    if isinstance(state, PipelinesInGroup):
        return f"group {state.group_name}"
    if isinstance(state, RunHistory):
        return f"runs of {state.pipeline_name}"
    return f"run {state.run_id} of {state.pipeline_name}"
