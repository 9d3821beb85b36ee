"""
Duplicate Guard
===============
Idempotency check run before any fix generation or publishing: has an open
pull request or issue already been filed for this stable identifier?

Matching rules:
    - host-side search for open items whose body contains the identifier
    - the title must start with the kind prefix ([Auto-Fix] / [Security])
    - the body must contain the identifier as an exact substring
    - pull requests are checked before issues

Search failures (rate limits, outages, auth) are reported as "nothing
found". Remediation is never blocked on the search API; two identical
triggers racing before either publishes can still both publish.
"""
import logging
from typing import Any, Dict, List, Optional

from autofix.core.constants import TITLE_PREFIX
from autofix.models.artifact import ExistingRef
from autofix.models.repository import RepositoryHandle
from autofix.services.github_client import GitHubClient

logger = logging.getLogger(__name__)


def _matches(item: Dict[str, Any], identifier: str, prefix: str) -> bool:
    title = item.get("title") or ""
    body = item.get("body") or ""
    return title.startswith(prefix) and identifier in body


class DuplicateGuard:
    """Looks up existing open remediation artifacts on the host."""

    def __init__(self, client: GitHubClient) -> None:
        self.client = client

    async def find_existing(
        self, repo: RepositoryHandle, identifier: str, kind: str
    ) -> Optional[ExistingRef]:
        """
        Find an open PR (preferred) or issue already filed for `identifier`.

        Parameters
        ----------
        repo : RepositoryHandle
            Target repository (owner, name, token).
        identifier : str
            Error hash or CVE/GHSA id.
        kind : str
            "error" or "vulnerability"; selects the title prefix.

        Returns
        -------
        ExistingRef or None
            None when nothing matches or the search itself failed.
        """
        prefix = TITLE_PREFIX[kind]
        try:
            pr = await self._search(repo, identifier, prefix, "pr")
            if pr is not None:
                logger.info("Existing PR #%d found for %s", pr.number, identifier)
                return pr
            issue = await self._search(repo, identifier, prefix, "issue")
            if issue is not None:
                logger.info("Existing issue #%d found for %s", issue.number, identifier)
            return issue
        except Exception as e:
            logger.warning("Duplicate search failed for %s, proceeding as new: %s", identifier, e)
            return None

    async def _search(
        self, repo: RepositoryHandle, identifier: str, prefix: str, item_type: str
    ) -> Optional[ExistingRef]:
        query = f'repo:{repo.full_name} is:{item_type} is:open "{identifier}" in:body'
        items: List[Dict[str, Any]] = await self.client.search_issues(query)
        for item in items:
            is_pr = "pull_request" in item
            if item_type == "pr" and not is_pr:
                continue
            if item_type == "issue" and is_pr:
                continue
            if _matches(item, identifier, prefix):
                return ExistingRef(
                    kind="pull_request" if is_pr else "issue",
                    number=item["number"],
                    url=item.get("html_url", ""),
                    title=item.get("title", ""),
                )
        return None
