"""
GitHub Client
=============
Thin async wrapper over the GitHub REST API used by every host-facing
component of a run (gateway, duplicate guard, publisher, CI gate).

One client is opened per remediation run with the run's short-lived
installation token. Non-2xx responses are raised as GitHubAPIError so that
callers can branch on `not_found` / `forbidden` / `rate_limited` and apply
their documented fallback. Network failures propagate as httpx errors.

Git data primitives (blob → tree → commit → ref) are exposed individually;
ordering is the publisher's responsibility.
"""
import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from autofix.core.config import GITHUB_API_URL
from autofix.core.errors import GitHubAPIError

logger = logging.getLogger(__name__)


class GitHubClient:
    """
    Async GitHub REST client bound to one access token.

    Usage:
        async with GitHubClient(token) as client:
            sha = await client.get_branch_sha("octo", "app", "main")
    """

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_URL,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "Incident-AutoFix-Agent",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._http.is_closed:
            await self._http.aclose()

    # -----------------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------------
    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Issue a request and return the decoded JSON body.

        Raises
        ------
        GitHubAPIError
            On any non-2xx response.
        """
        response = await self._http.request(method, path, params=params, json=json)
        if response.status_code >= 400:
            try:
                message = response.json().get("message", "")
            except ValueError:
                message = response.text[:200]
            raise GitHubAPIError(response.status_code, method, path, message)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # -----------------------------------------------------------------------
    # Repository and contents
    # -----------------------------------------------------------------------
    async def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self.request("GET", f"/repos/{owner}/{repo}")

    async def get_default_branch(self, owner: str, repo: str) -> str:
        data = await self.get_repository(owner, repo)
        return data.get("default_branch") or "main"

    async def get_contents(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Any:
        """Raw contents API payload: a dict for files, a list for directories."""
        params = {"ref": ref} if ref else None
        return await self.request("GET", f"/repos/{owner}/{repo}/contents/{path.lstrip('/')}", params=params)

    async def get_file_text(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> str:
        """
        Fetch and decode a file's content.

        Raises
        ------
        GitHubAPIError
            404 when the path does not exist or is not a regular file.
        """
        data = await self.get_contents(owner, repo, path, ref)
        if not isinstance(data, dict) or data.get("type") != "file":
            raise GitHubAPIError(404, "GET", path, f"{path} is not a file")
        return decode_content(data.get("content", ""))

    async def search_code(self, query: str, per_page: int = 20) -> List[Dict[str, Any]]:
        data = await self.request("GET", "/search/code", params={"q": query, "per_page": per_page})
        return data.get("items", [])

    async def search_issues(self, query: str, per_page: int = 10) -> List[Dict[str, Any]]:
        data = await self.request("GET", "/search/issues", params={"q": query, "per_page": per_page})
        return data.get("items", [])

    # -----------------------------------------------------------------------
    # Git data primitives
    # -----------------------------------------------------------------------
    async def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        data = await self.request("GET", f"/repos/{owner}/{repo}/git/refs/heads/{branch}")
        return data["object"]["sha"]

    async def get_commit_tree_sha(self, owner: str, repo: str, commit_sha: str) -> str:
        data = await self.request("GET", f"/repos/{owner}/{repo}/git/commits/{commit_sha}")
        return data["tree"]["sha"]

    async def create_blob(self, owner: str, repo: str, content: str) -> str:
        data = await self.request(
            "POST", f"/repos/{owner}/{repo}/git/blobs",
            json={"content": content, "encoding": "utf-8"},
        )
        return data["sha"]

    async def create_tree(self, owner: str, repo: str, base_tree: str, entries: List[Dict[str, str]]) -> str:
        data = await self.request(
            "POST", f"/repos/{owner}/{repo}/git/trees",
            json={"base_tree": base_tree, "tree": entries},
        )
        return data["sha"]

    async def create_commit(self, owner: str, repo: str, message: str, tree_sha: str, parents: List[str]) -> str:
        data = await self.request(
            "POST", f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": parents},
        )
        return data["sha"]

    async def create_ref(self, owner: str, repo: str, branch: str, sha: str) -> Dict[str, Any]:
        return await self.request(
            "POST", f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    async def update_ref(self, owner: str, repo: str, branch: str, sha: str) -> Dict[str, Any]:
        return await self.request(
            "PATCH", f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            json={"sha": sha, "force": False},
        )

    # -----------------------------------------------------------------------
    # Pull requests, issues, checks
    # -----------------------------------------------------------------------
    async def create_pull(
        self, owner: str, repo: str, title: str, body: str, head: str, base: str, draft: bool = True
    ) -> Dict[str, Any]:
        return await self.request(
            "POST", f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base, "draft": draft},
        )

    async def update_pull(self, owner: str, repo: str, number: int, **fields: Any) -> Dict[str, Any]:
        return await self.request("PATCH", f"/repos/{owner}/{repo}/pulls/{number}", json=fields)

    async def create_issue(
        self, owner: str, repo: str, title: str, body: str, labels: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        return await self.request("POST", f"/repos/{owner}/{repo}/issues", json=payload)

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> Dict[str, Any]:
        return await self.request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": body},
        )

    async def list_check_runs(self, owner: str, repo: str, sha: str) -> List[Dict[str, Any]]:
        data = await self.request("GET", f"/repos/{owner}/{repo}/commits/{sha}/check-runs")
        return data.get("check_runs", [])


def decode_content(encoded: str) -> str:
    """Decode a base64 contents-API payload (GitHub wraps it at 60 columns)."""
    return base64.b64decode(encoded.replace("\n", "")).decode("utf-8")
