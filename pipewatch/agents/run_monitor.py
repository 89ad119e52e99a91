"""
Live Run Monitor
================
Keeps one pipeline run's transcript current until there is nothing more to
learn, then stops on its own.

Session lifecycle:
    STARTING -> FETCHING -> IDLE_POLLING -> FETCHING -> ... -> STOPPED
    any non-terminal state -> CANCELED  (superseded, or the view was left)
    any fetch of the run detail failing -> ERRORED

Fetch pass:
    - Fetch the run detail (status + stages + jobs, in server order).
    - Walk the jobs serially. VM deployment jobs resolve their deploy order
      and read every machine's log; other jobs read their plain log.
    - Each job's text is published as soon as it is known. A failing job
      becomes an inline "Error fetching logs for job <id>: ..." entry and
      the walk continues with the next job.

Auto-refresh policy:
    - Only sessions for a freshly triggered run, or for a run seen RUNNING
      or QUEUED, poll again. A historical finished run gets one pass.
    - After the first terminal status (SUCCESS/FAILED/CANCELED) the session
      polls ``max_finished_polls`` more times to pick up logs that land
      after the status flips, then stops.
    - A manual refresh runs one extra pass on its own task and leaves the
      counters alone.

Cancellation:
    A session's CancelToken is checked before every job fetch and raced
    against the poll wait. Every update is posted to the UpdateBus under
    that token, so nothing a canceled session produces is ever applied.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pipewatch.core import output_formatter as fmt
from pipewatch.core.cancellation import CancelToken
from pipewatch.core.constants import (
    ACTIVE_STATUSES,
    DEFAULT_INTER_JOB_PAUSE_MS,
    DEFAULT_MAX_FINISHED_POLLS,
    DEFAULT_POLL_INTERVAL_MS,
    TERMINAL_STATUSES,
    RunStatus,
)
from pipewatch.core.errors import MalformedResponseError, PipewatchError
from pipewatch.core.interfaces import PresentationSurface, RunGateway
from pipewatch.core.update_bus import UpdateBus
from pipewatch.models.job import JobKind, JobRecord
from pipewatch.models.run import AutoRefreshState, RunDetail, advance_status
from pipewatch.models.transcript import TranscriptBuffer, TranscriptEntry
from pipewatch.parser.response_parser import extract_deploy_order_id

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    STARTING = "starting"
    FETCHING = "fetching"
    IDLE_POLLING = "idle_polling"
    STOPPED = "stopped"
    CANCELED = "canceled"
    ERRORED = "errored"


FINAL_STATES = frozenset({SessionState.STOPPED, SessionState.CANCELED, SessionState.ERRORED})


# ---------------------------------------------------------------------------
# Refresh Session
# ---------------------------------------------------------------------------
@dataclass
class RefreshSession:
    """Everything known about watching one (pipeline, run) pair."""

    pipeline_id: str
    run_id: str
    freshly_triggered: bool
    poll_interval_ms: int
    max_finished_polls: int
    token: CancelToken
    state: SessionState = SessionState.STARTING
    last_status: RunStatus = RunStatus.UNKNOWN
    poll_eligible: bool = False
    finished_observed: bool = False
    consecutive_finished_polls: int = 0
    passes: int = 0
    detail: Optional[RunDetail] = None
    error: Optional[PipewatchError] = None
    transcript: TranscriptBuffer = field(default_factory=TranscriptBuffer)
    timeline: List[Dict[str, Any]] = field(default_factory=list)
    task: Optional["asyncio.Task[None]"] = None
    manual_task: Optional["asyncio.Task[None]"] = None
    pass_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        self.poll_eligible = self.freshly_triggered

    @property
    def target(self) -> tuple[str, str]:
        return self.pipeline_id, self.run_id

    @property
    def active(self) -> bool:
        return self.state not in FINAL_STATES and not self.token.cancelled

    def auto_refresh_state(self) -> AutoRefreshState:
        if not self.active or not self.poll_eligible:
            return AutoRefreshState(enabled=False)
        if self.finished_observed:
            return AutoRefreshState(
                enabled=True,
                remaining=max(self.max_finished_polls - self.consecutive_finished_polls, 0),
            )
        return AutoRefreshState(enabled=True)

    def _add_timeline_event(self, status: RunStatus, manual: bool) -> None:
        self.timeline.append({
            "pass": self.passes,
            "status": status.value,
            "manual": manual,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def wait(self) -> SessionState:
        """Wait for the poll task and any manual pass to exit and return the final state."""
        for task in (self.task, self.manual_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                if not self.token.cancelled and self.state != SessionState.ERRORED:
                    raise
        return self.state


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------
class LiveRunMonitor:
    """
    Owner of the single RefreshSession allowed to touch the transcript.

    Usage:
        monitor = LiveRunMonitor(gateway, bus, surface)
        session = await monitor.start("123", "456", is_freshly_triggered=True)
        await monitor.refresh_now()
        await monitor.stop()
    """

    def __init__(
        self,
        gateway: RunGateway,
        bus: UpdateBus,
        surface: PresentationSurface,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_finished_polls: int = DEFAULT_MAX_FINISHED_POLLS,
        inter_job_pause_ms: int = DEFAULT_INTER_JOB_PAUSE_MS,
    ) -> None:
        self.gateway = gateway
        self.bus = bus
        self.surface = surface
        self.poll_interval_ms = poll_interval_ms
        self.max_finished_polls = max_finished_polls
        self.inter_job_pause_ms = inter_job_pause_ms
        self.session: Optional[RefreshSession] = None

    @property
    def active(self) -> bool:
        return self.session is not None and self.session.active

    async def start(
        self,
        pipeline_id: str,
        run_id: str,
        is_freshly_triggered: bool = False,
    ) -> RefreshSession:
        """
        Retire any current session, then start watching ``run_id``.

        The previous session's token is canceled and its task has exited
        before the new session's task is even created.
        """
        await self.stop(notify=False)
        session = RefreshSession(
            pipeline_id=pipeline_id,
            run_id=run_id,
            freshly_triggered=is_freshly_triggered,
            poll_interval_ms=self.poll_interval_ms,
            max_finished_polls=self.max_finished_polls,
            token=CancelToken(f"run:{pipeline_id}/{run_id}"),
        )
        self.session = session
        session.task = asyncio.create_task(self._run(session))
        logger.info(
            "Watching pipeline %s run %s (fresh=%s)", pipeline_id, run_id, is_freshly_triggered
        )
        return session

    async def stop(self, session: Optional[RefreshSession] = None, notify: bool = True) -> None:
        """
        Cancel ``session`` (default: the current one) and wait for it to exit.

        Idempotent. With ``notify`` the surface is told auto-refresh is off;
        navigation teardown passes False because the log view is going away.
        """
        session = session or self.session
        if session is None:
            return
        was_active = session.active
        session.token.cancel()
        for task in (session.task, session.manual_task):
            if task is not None and not task.done():
                task.cancel()
        await session.wait()
        if was_active:
            logger.info("Stopped watching pipeline %s run %s", session.pipeline_id, session.run_id)
            if notify:
                self.bus.post(None, self.surface.on_status_changed, session.last_status, AutoRefreshState(enabled=False))

    async def refresh_now(self) -> bool:
        """
        Schedule one pass outside the poll timer and return at once.

        The pass runs as the session's ``manual_task``, so ``stop`` cancels
        it along with the poll task. A refresh requested while one is still
        running joins it. Returns False when there is no active session to
        refresh; the caller starts a new session in that case.
        """
        session = self.session
        if session is None or not session.active:
            return False
        if session.manual_task is not None and not session.manual_task.done():
            logger.debug("Manual refresh of run %s already running", session.run_id)
            return True
        session.manual_task = asyncio.create_task(self._manual_pass(session))
        return True

    async def _manual_pass(self, session: RefreshSession) -> None:
        completed = await self._guarded_pass(session, manual=True)
        if completed and session.active:
            self._post_status(session)

    # -----------------------------------------------------------------------
    # Background loop
    # -----------------------------------------------------------------------

    async def _run(self, session: RefreshSession) -> None:
        poll_seconds = session.poll_interval_ms / 1000.0
        try:
            while True:
                if session.passes:
                    session.state = SessionState.FETCHING
                if not await self._guarded_pass(session):
                    return

                if not self._should_poll_again(session):
                    session.state = SessionState.STOPPED
                    self._post_status(session)
                    logger.info(
                        "Run %s settled at %s after %d passes",
                        session.run_id, session.last_status.value, session.passes,
                    )
                    return

                session.state = SessionState.IDLE_POLLING
                self._post_status(session)
                if await session.token.sleep(poll_seconds):
                    return
        finally:
            if session.token.cancelled and session.state not in (SessionState.STOPPED, SessionState.ERRORED):
                session.state = SessionState.CANCELED

    def _should_poll_again(self, session: RefreshSession) -> bool:
        if not session.poll_eligible:
            return False
        if session.last_status not in TERMINAL_STATUSES:
            return True
        if not session.finished_observed:
            session.finished_observed = True
            session.consecutive_finished_polls = 0
        else:
            session.consecutive_finished_polls += 1
        return session.consecutive_finished_polls < session.max_finished_polls

    async def _guarded_pass(self, session: RefreshSession, manual: bool = False) -> bool:
        """Run one pass; any failure errors the session and returns False."""
        try:
            return await self._fetch_pass(session, manual=manual)
        except PipewatchError as e:
            self._fail(session, e)
        except Exception as e:
            logger.exception("Unexpected failure watching run %s", session.run_id)
            self._fail(session, MalformedResponseError(f"Unexpected failure reading run {session.run_id}: {e}"))
        return False

    def _fail(self, session: RefreshSession, error: PipewatchError) -> None:
        session.error = error
        logger.error("Run %s detail fetch failed: %s", session.run_id, error)
        self._post(session, self.surface.on_error, error)
        session.state = SessionState.ERRORED
        self._post_status(session)
        # The sibling task (poll loop or manual pass) has nothing left to do
        current = asyncio.current_task()
        for task in (session.task, session.manual_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

    # -----------------------------------------------------------------------
    # One pass
    # -----------------------------------------------------------------------

    def _post(self, session: RefreshSession, fn: Callable[..., Any], *args: Any) -> None:
        self.bus.post(session.token, fn, *args)

    def _post_status(self, session: RefreshSession) -> None:
        self._post(session, self.surface.on_status_changed, session.last_status, session.auto_refresh_state())

    async def _fetch_pass(self, session: RefreshSession, manual: bool = False) -> bool:
        """
        Fetch the run and every job's log once, publishing as it goes.

        Returns False if the session was canceled part way through. A
        failing run-detail fetch raises; a failing job fetch does not.
        """
        token = session.token
        async with session.pass_lock:
            if token.cancelled:
                return False
            detail = await self.gateway.get_run_detail(session.pipeline_id, session.run_id)
            if token.cancelled:
                return False

            session.passes += 1
            session.detail = detail
            session.last_status = advance_status(session.last_status, detail.run.status)
            if session.last_status in ACTIVE_STATUSES:
                session.poll_eligible = True
            if session.state == SessionState.STARTING:
                session.state = SessionState.FETCHING
            session._add_timeline_event(session.last_status, manual)
            logger.debug("Pass %d of run %s: %s", session.passes, session.run_id, session.last_status.value)

            self._post(session, self.surface.on_transcript_reset, fmt.run_header(detail))
            self._post_status(session)

            pause = self.inter_job_pause_ms / 1000.0
            number = 0
            for stage in detail.stages:
                self._post(
                    session,
                    self.surface.on_transcript_append,
                    TranscriptEntry(kind="stage_header", text=fmt.stage_header(stage)),
                )
                for job in stage.jobs:
                    if token.cancelled:
                        return False
                    if number and pause > 0 and await token.sleep(pause):
                        return False
                    number += 1
                    self._post(
                        session,
                        self.surface.on_transcript_append,
                        TranscriptEntry(kind="job_header", text=fmt.job_header(number, job), job_id=job.id),
                    )
                    text = await self._job_text(session, job)
                    if token.cancelled:
                        return False
                    self._post(
                        session,
                        self.surface.on_transcript_append,
                        TranscriptEntry(kind="log_text", text=text + fmt.job_footer(), job_id=job.id),
                    )
            return True

    async def _job_text(self, session: RefreshSession, job: JobRecord) -> str:
        if job.kind == JobKind.VM_DEPLOYMENT:
            return await self._deployment_text(session, job)
        try:
            log = await self.gateway.get_job_log(session.pipeline_id, session.run_id, job.id)
        except PipewatchError as e:
            logger.warning("Job %s log failed: %s", job.id, e)
            return fmt.job_log_error(job.id, e)
        session.transcript.absorb(job.id, log)
        return fmt.log_text(log)

    async def _deployment_text(self, session: RefreshSession, job: JobRecord) -> str:
        try:
            deploy_order_id = extract_deploy_order_id(job.actions)
        except MalformedResponseError as e:
            return fmt.deploy_order_missing(job, e)
        try:
            order, machines = await self.gateway.get_deployment_log(session.pipeline_id, deploy_order_id)
        except PipewatchError as e:
            logger.warning("Deploy order %s failed: %s", deploy_order_id, e)
            return fmt.deploy_order_error(deploy_order_id, e)

        parts = [fmt.deploy_order_block(order)]
        for number, (machine, result) in enumerate(machines, 1):
            parts.append(fmt.machine_header(number, machine))
            if isinstance(result, Exception):
                parts.append(fmt.machine_log_error(machine.machine_sn, result))
            else:
                parts.append(fmt.machine_log_block(result))
        text = "".join(parts)
        session.transcript.absorb(job.id, text)
        return text
