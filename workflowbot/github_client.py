"""
GitHub Actions API client for workflowbot
Lists, dispatches and reruns runs of one configured workflow
"""
import asyncio
import aiohttp
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from .logging_config import get_logger

logger = get_logger("workflowbot.github")

ACTIVE_STATUSES = ("queued", "in_progress")


@dataclass
class WorkflowRun:
    """A single run of the configured workflow"""
    id: int
    status: str
    conclusion: Optional[str] = None
    html_url: str = ""
    head_branch: str = ""

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WorkflowRun":
        return cls(
            id=int(data["id"]),
            status=data.get("status") or "unknown",
            conclusion=data.get("conclusion"),
            html_url=data.get("html_url") or "",
            head_branch=data.get("head_branch") or "",
        )


@dataclass
class WorkflowRunList:
    """Runs of the workflow, most recent first"""
    total_count: int = 0
    runs: List[WorkflowRun] = field(default_factory=list)

    @property
    def latest(self) -> Optional[WorkflowRun]:
        return self.runs[0] if self.runs else None


@dataclass
class TriggerResult:
    """Outcome of a dispatch or rerun request"""
    accepted: bool
    status: int


class UpstreamError(Exception):
    """GitHub returned a non-success status or could not be reached"""
    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        self.message = message
        if status is None:
            super().__init__(message or "GitHub request failed")
        else:
            super().__init__(f"GitHub API error {status}" + (f": {message}" if message else ""))


class GitHubClient:
    """
    Async client for one (owner, repo, workflow) triple.

    The token is passed per call since it differs per user. Requests are not
    retried; every request is bounded by ``timeout`` seconds.
    """
    BASE_URL = "https://api.github.com"
    DISPATCH_OK = (201, 204)
    RERUN_OK = (201, 202)

    def __init__(
        self,
        owner: str,
        repo: str,
        workflow_id: str,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
    ):
        self.owner = owner
        self.repo = repo
        self.workflow_id = workflow_id
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings) -> "GitHubClient":
        return cls(
            settings.repo_owner,
            settings.repo_name,
            settings.workflow_id,
            base_url=settings.github_api_url,
            timeout=settings.http_timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Accept": "application/vnd.github+json",
                    "User-Agent": "workflowbot/1.0",
                },
                timeout=self.timeout,
            )
        return self._session

    async def close(self):
        """Close the session"""
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def workflow_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}/actions/workflows/{self.workflow_id}"

    def _run_url(self, run_id: int) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}/actions/runs/{run_id}"

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        data: Optional[dict] = None,
    ) -> tuple:
        """Make one request; returns (status, parsed JSON body or None)."""
        session = await self._get_session()
        logger.debug(f"{method} {url}")
        try:
            async with session.request(
                method,
                url,
                json=data,
                headers={"Authorization": f"token {token}"},
            ) as response:
                body = None
                if response.status != 204:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
                return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(None, f"Request failed: {str(e) or type(e).__name__}") from e

    @staticmethod
    def _error_message(body) -> str:
        if isinstance(body, dict):
            return str(body.get("message", ""))
        return ""

    async def list_runs(self, token: str) -> WorkflowRunList:
        """List runs of the workflow, most recent first"""
        status, body = await self._request("GET", f"{self.workflow_url}/runs", token)
        if not 200 <= status < 300:
            raise UpstreamError(status, self._error_message(body))

        body = body if isinstance(body, dict) else {}
        runs = [WorkflowRun.from_api(r) for r in body.get("workflow_runs") or []]
        return WorkflowRunList(total_count=int(body.get("total_count") or 0), runs=runs)

    async def dispatch(
        self,
        token: str,
        ref: str = "main",
        inputs: Optional[Dict[str, Any]] = None,
    ) -> TriggerResult:
        """Request a new run on ``ref``"""
        payload: Dict[str, Any] = {"ref": ref}
        if inputs:
            payload["inputs"] = inputs
        status, body = await self._request("POST", f"{self.workflow_url}/dispatches", token, data=payload)
        if status not in self.DISPATCH_OK:
            logger.warning_with(
                "Workflow dispatch rejected",
                status=status, ref=ref, message=self._error_message(body),
            )
        return TriggerResult(accepted=status in self.DISPATCH_OK, status=status)

    async def rerun(self, token: str, run_id: int) -> TriggerResult:
        """Request re-execution of an earlier run"""
        status, body = await self._request("POST", f"{self._run_url(run_id)}/rerun", token)
        if status not in self.RERUN_OK:
            logger.warning_with(
                "Workflow rerun rejected",
                status=status, run_id=run_id, message=self._error_message(body),
            )
        return TriggerResult(accepted=status in self.RERUN_OK, status=status)
