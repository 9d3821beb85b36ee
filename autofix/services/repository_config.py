"""
Repository Config Service
=========================
Resolves the repository and a short-lived installation token for an
organization from the system of record:

    GET {CORE_API_URL}/api/organization-version-control/{organization_id}/token
    → {"data": {"token": "...", "repository": {"full_name": "owner/repo", "default_branch": "main"}}}

Missing credentials are a configuration failure: the run must abort before
touching the host.
"""
import logging
import time
from typing import Optional

import httpx

from autofix.core.config import ACCESS_TOKEN, CORE_API_URL
from autofix.core.errors import ConfigurationError
from autofix.models.repository import RepositoryHandle

logger = logging.getLogger(__name__)


class RepositoryConfigService:
    def __init__(
        self,
        base_url: str = CORE_API_URL,
        access_token: Optional[str] = ACCESS_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._transport = transport

    async def fetch(self, organization_id: str) -> RepositoryHandle:
        """
        Fetch the RepositoryHandle configured for `organization_id`.

        Raises
        ------
        ConfigurationError
            ACCESS_TOKEN/CORE_API_URL unset, request failed, or the
            organization has no repository or token configured.
        """
        if not self.access_token or not self.base_url:
            raise ConfigurationError("ACCESS_TOKEN and CORE_API_URL must be set to resolve repository config")

        url = f"{self.base_url}/api/organization-version-control/{organization_id}/token"
        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.get(url, headers={"Authorization": f"Bearer {self.access_token}"})
                response.raise_for_status()
                data = response.json().get("data") or {}
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigurationError(f"Failed to fetch GitHub config for {organization_id}: {e}") from e

        token = data.get("token")
        repository = data.get("repository") or {}
        full_name = repository.get("full_name") or ""
        if not token or "/" not in full_name:
            raise ConfigurationError(f"GitHub not configured for organization {organization_id}")

        owner, repo = full_name.split("/", 1)
        logger.info(
            "Repository config fetched for %s/%s (%.0fms)", owner, repo, (time.time() - start) * 1000,
        )
        return RepositoryHandle(
            owner=owner,
            repo=repo,
            default_branch=repository.get("default_branch") or "",
            token=token,
        )
