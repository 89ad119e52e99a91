import asyncio
import json

import httpx
import pytest

from pipewatch.core.errors import MalformedResponseError, RemoteAPIError, TransportError
from pipewatch.gateway.client import PipelineGateway, build_run_params
from pipewatch.models.job import MachineLog

BASE = "/oapi/v1/flow/organizations/org-1"


def _make_gateway(handler, endpoint="openapi-rdc.aliyuncs.com"):
    return PipelineGateway("secret-token", "org-1", endpoint=endpoint, timeout=5, transport=httpx.MockTransport(handler))


def _call(handler, method, *args, **kwargs):
    """Run one gateway call against ``handler`` and close the client."""

    async def run_test():
        async with _make_gateway(handler) as gateway:
            return await getattr(gateway, method)(*args, **kwargs)

    return asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestRequests:
    def test_list_pipelines_sends_auth_and_paging(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json=[{"id": 1, "name": "api"}, {"id": 2.0, "name": "web"}],
                headers={"x-page": "1", "x-total-pages": "4"},
            )

        page = _call(handler, "list_pipelines", page=1, per_page=2)

        request = seen[0]
        assert request.url.host == "openapi-rdc.aliyuncs.com"
        assert request.url.scheme == "https"
        assert request.url.path == f"{BASE}/pipelines"
        assert request.url.params["page"] == "1"
        assert request.url.params["perPage"] == "2"
        assert "statusList" not in request.url.params
        assert request.headers["x-yunxiao-token"] == "secret-token"
        assert [p.id for p in page.items] == ["1", "2"]
        assert page.total_pages == 4
        assert not page.is_last_page

    def test_status_filter_becomes_status_list(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        page = _call(handler, "list_pipelines", 1, 30, ("RUNNING", "WAITING"))

        assert seen[0].url.params["statusList"] == "RUNNING,WAITING"
        assert page.items == []
        assert page.is_last_page

    def test_group_pipelines_pass_group_id(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"pipelineId": 9, "pipelineName": "svc", "gmtCreate": 1700000000000}])

        page = _call(handler, "list_pipelines_in_group", 42)

        assert seen[0].url.path == f"{BASE}/pipelineGroups/pipelines"
        assert seen[0].url.params["groupId"] == "42"
        assert page.items[0].name == "svc"
        assert page.items[0].created_at is not None

    def test_list_groups_walks_every_page(self):
        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=[{"id": page, "name": f"g{page}"}], headers={"x-total-pages": "3"})

        groups = _call(handler, "list_groups", per_page=1)

        assert [g.name for g in groups] == ["g1", "g2", "g3"]

    def test_endpoint_with_scheme_is_used_as_is(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        async def run_test():
            async with _make_gateway(handler, endpoint="http://localhost:8080") as gateway:
                await gateway.list_runs("5")

        asyncio.run(run_test())
        assert seen[0].url.scheme == "http"
        assert seen[0].url.port == 8080
        assert seen[0].url.path == f"{BASE}/pipelines/5/runs"


# ---------------------------------------------------------------------------
# Failure mapping
# ---------------------------------------------------------------------------

class TestFailures:
    def test_error_status_becomes_remote_api_error(self):
        def handler(request):
            return httpx.Response(403, json={"errorCode": "Forbidden", "errorMessage": "no access"})

        with pytest.raises(RemoteAPIError) as exc:
            _call(handler, "list_pipelines")
        assert exc.value.status_code == 403
        assert exc.value.code == "Forbidden"
        assert str(exc.value) == "HTTP 403 Forbidden: no access"

    def test_plain_text_error_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad gateway")

        with pytest.raises(RemoteAPIError) as exc:
            _call(handler, "get_run_detail", "1", "2")
        assert exc.value.message == "Bad gateway"

    def test_timeout_becomes_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError, match="timed out"):
            _call(handler, "list_pipelines")

    def test_connection_failure_becomes_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError, match="refused"):
            _call(handler, "get_job_log", "1", "2", "3")

    def test_non_json_body_is_malformed(self):
        def handler(request):
            return httpx.Response(200, text="<html>login</html>")

        with pytest.raises(MalformedResponseError, match="not JSON"):
            _call(handler, "list_pipelines")

    def test_unknown_list_shape_lists_keys(self):
        def handler(request):
            return httpx.Response(200, json={"rows": []})

        with pytest.raises(MalformedResponseError) as exc:
            _call(handler, "list_runs", "1")
        assert exc.value.present_keys == ["rows"]


# ---------------------------------------------------------------------------
# Runs and logs
# ---------------------------------------------------------------------------

class TestRuns:
    @pytest.mark.parametrize("body,expected", [
        ("12345", "12345"),
        ('"678"', "678"),
        ('{"data": {"runId": 9}}', "9"),
        ('{"pipelineRunId": 10.0}', "10"),
    ])
    def test_trigger_run_id_variants(self, body, expected):
        def handler(request):
            return httpx.Response(200, text=body)

        assert _call(handler, "trigger_run", "1001") == expected

    def test_trigger_sends_params_as_json_string(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="1")

        params = build_run_params({"git@example.com:team/api.git": "master"}, "release")
        _call(handler, "trigger_run", "1001", params)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == f"{BASE}/pipelines/1001/runs"
        body = json.loads(request.content)
        assert json.loads(body["params"]) == {"runningBranchs": {"git@example.com:team/api.git": "release"}}

    def test_trigger_without_run_id_is_malformed(self):
        def handler(request):
            return httpx.Response(200, json={"success": True})

        with pytest.raises(MalformedResponseError):
            _call(handler, "trigger_run", "1001")

    def test_stop_run_uses_put(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=True)

        _call(handler, "stop_run", "1001", "77")
        assert seen[0].method == "PUT"
        assert seen[0].url.path == f"{BASE}/pipelines/1001/runs/77"

    def test_latest_repositories(self):
        def handler(request):
            assert request.url.path.endswith("/runs/latestPipelineRun")
            return httpx.Response(200, json={"sources": [
                {"data": {"repo": "https://git/a.git", "branch": "dev"}},
                {"repoUrl": "https://git/b.git"},
            ]})

        assert _call(handler, "get_latest_repositories", "1001") == {
            "https://git/a.git": "dev",
            "https://git/b.git": "master",
        }

    def test_empty_job_log(self):
        def handler(request):
            return httpx.Response(200, json={"content": ""})

        assert _call(handler, "get_job_log", "1", "2", "3") == ""

    def test_job_log_path(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"content": "hello"})

        assert _call(handler, "get_job_log", "1", "2", "3") == "hello"
        assert seen[0].url.path == f"{BASE}/pipelines/1/runs/2/job/3/log"

    def test_deployment_log_keeps_machine_failures_inline(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/deploy/D1"):
                return httpx.Response(200, json={
                    "deployOrderId": "D1",
                    "status": "RUNNING",
                    "deployMachineInfo": {"deployMachines": [
                        {"ip": "10.0.0.1", "machineSn": "SN1"},
                        {"ip": "10.0.0.2", "machineSn": "SN2"},
                    ]},
                })
            if path.endswith("/machine/SN1/log"):
                return httpx.Response(200, json={"deployLog": "ok"})
            return httpx.Response(500, json={"errorMessage": "agent offline"})

        order, machines = _call(handler, "get_deployment_log", "1001", "D1")

        assert order.deploy_order_id == "D1"
        assert isinstance(machines[0][1], MachineLog)
        assert machines[0][1].deploy_log == "ok"
        assert isinstance(machines[1][1], RemoteAPIError)


def test_build_run_params_keeps_branches_for_blank_input():
    assert build_run_params({"a": "dev", "b": "main"}, "") == {"runningBranchs": {"a": "dev", "b": "main"}}
    assert build_run_params({}, "dev") == {}


def test_gateway_satisfies_run_gateway_protocol():
    from pipewatch.core.interfaces import RunGateway

    assert isinstance(PipelineGateway("t", "o"), RunGateway)


def test_out_of_range_timestamps_do_not_escape_the_gateway():
    def handler(request):
        if request.url.path.endswith("/runs/77"):
            return httpx.Response(200, json={"status": "RUNNING", "startTime": 1.7e15, "stages": []})
        return httpx.Response(200, json=[{"id": 1, "name": "api", "createTime": "nan"}])

    detail = _call(handler, "get_run_detail", "1001", "77")
    page = _call(handler, "list_pipelines")

    assert detail.run.started_at is None
    assert page.items[0].created_at is None
