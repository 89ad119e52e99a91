"""
Pipeline Gateway
================
Asynchronous client for the remote pipeline service (Yunxiao Flow OpenAPI).

Every public method returns normalized records from
``pipewatch.parser.response_parser`` or raises one of the typed errors in
``pipewatch.core.errors``. Callers never see httpx exceptions or raw JSON.

Failure mapping:
    - httpx.TimeoutException / httpx.TransportError -> TransportError
    - non-2xx response                              -> RemoteAPIError
      (server errorCode/errorMessage when the body carries them)
    - undecodable body or unknown shape             -> MalformedResponseError

No call is retried here; a retry is always a fresh operator command.

Pagination:
    List calls return a ``Page``. ``x-page``/``x-total-pages`` headers are
    copied onto it when the endpoint sends them; ``Page.is_last_page``
    decides termination from whichever signal is available.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

from pipewatch.core.constants import (
    API_PREFIX,
    AUTH_HEADER,
    DEFAULT_ENDPOINT,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    USER_AGENT,
)
from pipewatch.core.errors import MalformedResponseError, RemoteAPIError, TransportError
from pipewatch.models.job import DeployMachine, DeployOrder, MachineLog
from pipewatch.models.page import Page
from pipewatch.models.pipeline import PipelineGroup, PipelineSummary
from pipewatch.models.run import RunDetail, RunRecord
from pipewatch.parser import response_parser as rp

logger = logging.getLogger(__name__)

# Upper bound for the internal group walk; the service caps perPage at 30
_MAX_GROUP_PAGES = 100

MachineResult = Tuple[DeployMachine, Union[MachineLog, Exception]]


def build_run_params(repositories: Dict[str, str], branch: str) -> Dict[str, Any]:
    """
    Trigger parameters that run every known repository on ``branch``.

    An empty branch keeps each repository's branch from the latest run.
    """
    running = {repo: (branch or previous) for repo, previous in repositories.items()}
    return {"runningBranchs": running} if running else {}


class PipelineGateway:
    """
    One authenticated connection to the pipeline service for an organization.

    Usage:
        gateway = PipelineGateway(token, org_id)
        page = await gateway.list_pipelines(page=1)
        await gateway.close()
    """

    def __init__(
        self,
        token: str,
        organization_id: str,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.organization_id = organization_id
        self.endpoint = endpoint
        self.timeout = timeout
        self.headers = {
            AUTH_HEADER: token,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def base_path(self) -> str:
        return f"{API_PREFIX}/{self.organization_id}"

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            base_url = self.endpoint if "://" in self.endpoint else f"https://{self.endpoint}"
            self._http = httpx.AsyncClient(
                base_url=base_url,
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "PipelineGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        http = await self._get_http()
        url = f"{self.base_path}{path}"
        logger.debug("%s %s params=%s", method, url, params)
        try:
            response = await http.request(method, url, params=params, json=body)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {url} timed out after {self.timeout:.0f}s") from e
        except httpx.TransportError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        if response.is_error:
            raise self._remote_error(response)
        return response

    @staticmethod
    def _remote_error(response: httpx.Response) -> RemoteAPIError:
        code: Optional[str] = None
        message = response.text.strip() or response.reason_phrase
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            code = rp.to_id(payload.get("errorCode") or payload.get("code"))
            message = str(payload.get("errorMessage") or payload.get("message") or message)
        logger.warning("Remote API error %d on %s: %s", response.status_code, response.request.url.path, message)
        return RemoteAPIError(message, status_code=response.status_code, code=code)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            snippet = response.text[:120]
            raise MalformedResponseError(f"Response is not JSON: {snippet!r}") from e

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._json(await self._send("GET", path, params=params))

    async def _get_page(
        self,
        path: str,
        page: int,
        per_page: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Any, Optional[int]]:
        params: Dict[str, Any] = {"page": page, "perPage": per_page}
        if extra:
            params.update(extra)
        response = await self._send("GET", path, params=params)
        _, total_pages = rp.parse_page_headers(response.headers)
        return self._json(response), total_pages

    @staticmethod
    def _status_params(status_filter: Sequence[str]) -> Dict[str, Any]:
        return {"statusList": ",".join(status_filter)} if status_filter else {}

    # -----------------------------------------------------------------------
    # Collections
    # -----------------------------------------------------------------------

    async def list_pipelines(
        self,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
        status_filter: Sequence[str] = (),
    ) -> Page[PipelineSummary]:
        payload, total = await self._get_page("/pipelines", page, per_page, self._status_params(status_filter))
        return Page(rp.parse_pipelines(payload), page, per_page, total)

    async def list_pipelines_in_group(
        self,
        group_id: int,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
        status_filter: Sequence[str] = (),
    ) -> Page[PipelineSummary]:
        extra = {"groupId": group_id, **self._status_params(status_filter)}
        payload, total = await self._get_page("/pipelineGroups/pipelines", page, per_page, extra)
        return Page(rp.parse_pipelines(payload), page, per_page, total)

    async def list_groups(self, per_page: int = DEFAULT_PAGE_SIZE) -> List[PipelineGroup]:
        """All pipeline groups; the page walk happens here, not in the caller."""
        groups: List[PipelineGroup] = []
        for page_index in range(1, _MAX_GROUP_PAGES + 1):
            payload, total = await self._get_page("/pipelineGroups", page_index, per_page)
            page = Page(rp.parse_groups(payload), page_index, per_page, total)
            groups.extend(page.items)
            if page.is_last_page:
                break
        else:
            logger.warning("Stopped listing groups after %d pages", _MAX_GROUP_PAGES)
        return groups

    async def list_runs(
        self,
        pipeline_id: str,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> Page[RunRecord]:
        payload, total = await self._get_page(f"/pipelines/{pipeline_id}/runs", page, per_page)
        return Page(rp.parse_runs(payload, pipeline_id), page, per_page, total)

    # -----------------------------------------------------------------------
    # Runs
    # -----------------------------------------------------------------------

    async def get_run_detail(self, pipeline_id: str, run_id: str) -> RunDetail:
        payload = await self._get_json(f"/pipelines/{pipeline_id}/runs/{run_id}")
        return rp.parse_run_detail(payload, pipeline_id, run_id)

    async def get_latest_repositories(self, pipeline_id: str) -> Dict[str, str]:
        """Repository -> branch pairs used by the pipeline's latest run."""
        payload = await self._get_json(f"/pipelines/{pipeline_id}/runs/latestPipelineRun")
        return rp.repositories_from_latest_run(payload)

    async def trigger_run(self, pipeline_id: str, params: Optional[Dict[str, Any]] = None) -> str:
        """
        Start a new run and return its id.

        The service expects ``params`` as a JSON *string* inside the body.
        """
        body = {"params": json.dumps(params or {})}
        response = await self._send("POST", f"/pipelines/{pipeline_id}/runs", body=body)
        run_id = rp.parse_run_id(response.text)
        logger.info("Triggered pipeline %s, run %s", pipeline_id, run_id)
        return run_id

    async def stop_run(self, pipeline_id: str, run_id: str) -> None:
        await self._send("PUT", f"/pipelines/{pipeline_id}/runs/{run_id}")
        logger.info("Requested stop of pipeline %s run %s", pipeline_id, run_id)

    # -----------------------------------------------------------------------
    # Logs
    # -----------------------------------------------------------------------

    async def get_job_log(self, pipeline_id: str, run_id: str, job_id: str) -> str:
        payload = await self._get_json(f"/pipelines/{pipeline_id}/runs/{run_id}/job/{job_id}/log")
        if payload is None:
            return ""
        return rp.parse_job_log(payload)

    async def get_deploy_order(self, pipeline_id: str, deploy_order_id: str) -> DeployOrder:
        payload = await self._get_json(f"/pipelines/{pipeline_id}/deploy/{deploy_order_id}")
        return rp.parse_deploy_order(payload)

    async def get_machine_log(self, pipeline_id: str, deploy_order_id: str, machine_sn: str) -> MachineLog:
        payload = await self._get_json(
            f"/pipelines/{pipeline_id}/deploy/{deploy_order_id}/machine/{machine_sn}/log"
        )
        return rp.parse_machine_log(payload)

    async def get_deployment_log(
        self, pipeline_id: str, deploy_order_id: str
    ) -> Tuple[DeployOrder, List[MachineResult]]:
        """
        Deployment order plus each machine's log, in machine order.

        A failing machine does not fail the call: its slot carries the
        error instead of a MachineLog. A failing order fetch raises.
        """
        order = await self.get_deploy_order(pipeline_id, deploy_order_id)
        results: List[MachineResult] = []
        for machine in order.machines:
            try:
                log = await self.get_machine_log(pipeline_id, deploy_order_id, machine.machine_sn)
            except (TransportError, RemoteAPIError, MalformedResponseError) as e:
                logger.warning("Machine log %s failed: %s", machine.machine_sn, e)
                results.append((machine, e))
            else:
                results.append((machine, log))
        return order, results
