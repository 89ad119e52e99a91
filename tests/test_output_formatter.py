"""
Unit Tests - Output Formatter
=============================
Validates the transcript, status bar and list row text. Every assertion
uses exact string equality.
"""
from datetime import datetime, timedelta, timezone

import pytest

from pipewatch.core import output_formatter as fmt
from pipewatch.core.constants import RunStatus
from pipewatch.core.errors import MalformedResponseError, TransportError
from pipewatch.models.job import DeployMachine, DeployOrder, JobRecord, MachineLog
from pipewatch.models.run import AutoRefreshState, RunDetail, RunRecord, Stage

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# 1. Durations and times
# ---------------------------------------------------------------------------
class TestDuration:

    @pytest.mark.parametrize("seconds,expected", [
        (42, "42s"),
        (60, "60s"),
        (138, "2.3m"),
        (5400, "1.5h"),
    ])
    def test_compact_units(self, seconds, expected):
        assert fmt.format_duration(T0, T0 + timedelta(seconds=seconds)) == expected

    def test_running_and_unknown(self):
        assert fmt.format_duration(T0, None) == "Running..."
        assert fmt.format_duration(None, None) == "-"

    def test_missing_time(self):
        assert fmt.format_time(None) == "-"


# ---------------------------------------------------------------------------
# 2. Transcript pieces
# ---------------------------------------------------------------------------
class TestTranscriptPieces:

    def test_run_header(self):
        detail = RunDetail(run=RunRecord(run_id="77", pipeline_id="1001", status=RunStatus.RUNNING, raw_status="RUNNING"))
        assert fmt.run_header(detail) == (
            "Pipeline Run Logs - Run ID: 77\n"
            "Pipeline ID: 1001\n"
            "Status: RUNNING\n"
            + "=" * 81 + "\n\n"
        )

    def test_stage_header(self):
        assert fmt.stage_header(Stage(name="Build", index="0")) == "Stage: Build (0)\n" + "-" * 61 + "\n\n"

    def test_job_header_without_times(self):
        job = JobRecord(id="5", name="compile", job_sign="build_1", status="SUCCESS")
        assert fmt.job_header(2, job) == (
            "Job #2: compile (ID: 5)\n"
            "Job Sign: build_1\n"
            "Status: SUCCESS\n"
            + "=" * 50 + "\n"
        )

    def test_job_header_with_start_time(self):
        job = JobRecord(id="5", name="compile", started_at=T0)
        assert "Start Time: " in fmt.job_header(1, job)
        assert "End Time: " not in fmt.job_header(1, job)

    def test_job_footer(self):
        assert fmt.job_footer() == "\n" + "=" * 80 + "\n\n"

    def test_log_text(self):
        assert fmt.log_text("") == "No logs available for this job.\n"
        assert fmt.log_text("done") == "done\n"
        assert fmt.log_text("done\n") == "done\n"

    def test_job_log_error(self):
        assert fmt.job_log_error("42", TransportError("timed out")) == "Error fetching logs for job 42: timed out\n"


# ---------------------------------------------------------------------------
# 3. VM deployment text
# ---------------------------------------------------------------------------
class TestDeployment:

    @pytest.mark.parametrize("status,phrase", [
        ("RUNNING", "still in progress"),
        ("QUEUED", "still in progress"),
        ("FAILED", "Deployment job failed"),
        ("SUCCESS", "not available for this job"),
    ])
    def test_missing_order_depends_on_job_status(self, status, phrase):
        job = JobRecord(id="9", name="deploy", status=status)
        text = fmt.deploy_order_missing(job, MalformedResponseError("no actions found in job"))
        assert text.startswith("Error extracting deployOrderId from job actions: no actions found in job\n")
        assert phrase in text

    def test_order_without_machines(self):
        order = DeployOrder(deploy_order_id="D1", status="RUNNING", current_batch=1, total_batch=3, host_group_id="7")
        assert fmt.deploy_order_block(order) == (
            "Deploy Order ID: D1\n"
            "Deploy Status: RUNNING\n"
            "Current Batch: 1/3\n"
            "Host Group ID: 7\n"
            + "-" * 40 + "\n"
            "No machines found in this deployment.\n"
        )

    def test_machine_header(self):
        machine = DeployMachine(ip="10.0.0.1", machine_sn="SN1", status="SUCCESS", client_status="ONLINE", batch_num=2)
        assert fmt.machine_header(1, machine) == (
            "Machine #1: 10.0.0.1 (SN: SN1)\n"
            "Machine Status: SUCCESS, Client Status: ONLINE\n"
            "Batch: 2\n"
            + "." * 30 + "\n"
        )

    def test_machine_log_block(self):
        log = MachineLog(region="cn-hangzhou", deploy_log="started")
        assert fmt.machine_log_block(log) == "Region: cn-hangzhou\nDeploy Log:\nstarted\n\n"
        assert fmt.machine_log_block(MachineLog()) == "Deploy Log:\nNo deployment logs available for this machine.\n\n"


# ---------------------------------------------------------------------------
# 4. Status bar and lists
# ---------------------------------------------------------------------------
class TestStatusAndLists:

    def test_status_bar(self):
        assert fmt.status_bar("RUNNING", AutoRefreshState(enabled=True)) == "Status: RUNNING | Auto-refresh: ON"
        assert fmt.status_bar("SUCCESS", AutoRefreshState(enabled=True, remaining=2)) == (
            "Status: SUCCESS | Auto-refresh: ON (2 more)"
        )
        assert fmt.status_bar("", AutoRefreshState(enabled=False)) == "Status: - | Auto-refresh: OFF"

    def test_refresh_hint_rounds_to_seconds(self):
        assert fmt.refresh_hint(5000).startswith("Auto-refreshing every 5 seconds.")
        assert fmt.refresh_hint(0).startswith("Auto-refreshing every 1 seconds.")

    def test_pipelines_title(self):
        assert fmt.pipelines_title() == "Pipelines"
        assert fmt.pipelines_title("backend", running_only=True) == "Pipelines in 'backend' (RUNNING+WAITING)"
        assert fmt.pipelines_title(query="api") == "Pipelines [search: api]"

    def test_run_history_title(self):
        assert fmt.run_history_title("api", 2, 0) == (
            "Run History - api (Page 2/1) [/] to navigate, 0 to go to first page"
        )

    def test_run_row(self):
        run = RunRecord(
            run_id="5",
            pipeline_id="1",
            status=RunStatus.FAILED,
            raw_status="FAIL",
            trigger_mode="MANUAL",
            started_at=T0,
            finished_at=T0 + timedelta(seconds=42),
        )
        row = fmt.run_row(3, run)
        assert row[0] == "#3"
        assert row[1] == "FAIL"
        assert row[2] == "MANUAL"
        assert row[5] == "42s"

    def test_trigger_summary(self):
        assert fmt.trigger_summary("api", "777", {"repo.git": "dev"}) == (
            "Pipeline 'api' triggered successfully!\n"
            "Run ID: 777\n"
            "Repository: repo.git\n"
            "Branch: dev\n"
        )

    def test_collection_error(self):
        assert fmt.collection_error("groups", TransportError("offline")) == "Error fetching groups: offline"
