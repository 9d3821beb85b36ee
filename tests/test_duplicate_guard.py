"""
Duplicate Guard Tests
=====================
PR-before-issue lookup, title/body matching and failure tolerance.
"""
import asyncio

from unittest.mock import AsyncMock, MagicMock

from autofix.core.errors import GitHubAPIError
from autofix.models.repository import RepositoryHandle
from autofix.services.duplicate_guard import DuplicateGuard

REPO = RepositoryHandle(owner="octo", repo="shop", default_branch="main", token="t")


def _pr(number, title, body):
    return {"number": number, "title": title, "body": body, "html_url": f"https://github.com/octo/shop/pull/{number}", "pull_request": {}}


def _issue(number, title, body):
    return {"number": number, "title": title, "body": body, "html_url": f"https://github.com/octo/shop/issues/{number}"}


def _guard(pr_items, issue_items):
    client = MagicMock()
    client.search_issues = AsyncMock(side_effect=[pr_items, issue_items])
    return DuplicateGuard(client), client


def test_existing_pr_found_and_issue_search_skipped():
    async def run_test():
        guard, client = _guard([_pr(12, "[Auto-Fix] TypeError in cart", "Identifier: abc123")], [])
        ref = await guard.find_existing(REPO, "abc123", "error")
        assert ref.kind == "pull_request"
        assert ref.number == 12
        assert client.search_issues.await_count == 1
        query = client.search_issues.await_args.args[0]
        assert "repo:octo/shop" in query
        assert "is:pr" in query
        assert '"abc123"' in query

    asyncio.run(run_test())


def test_falls_back_to_issue_search():
    async def run_test():
        guard, client = _guard([], [_issue(7, "[Security] lodash prototype pollution", "CVE-2021-23337 details")])
        ref = await guard.find_existing(REPO, "CVE-2021-23337", "vulnerability")
        assert ref.kind == "issue"
        assert ref.url.endswith("/issues/7")
        assert "is:issue" in client.search_issues.await_args.args[0]

    asyncio.run(run_test())


def test_title_prefix_must_match_kind():
    async def run_test():
        guard, _ = _guard([_pr(3, "[Security] bump lodash", "abc123")], [_issue(4, "Bug report", "abc123")])
        assert await guard.find_existing(REPO, "abc123", "error") is None

    asyncio.run(run_test())


def test_identifier_must_appear_in_body():
    async def run_test():
        guard, _ = _guard([_pr(3, "[Auto-Fix] TypeError", "Identifier: abc12")], [])
        assert await guard.find_existing(REPO, "abc123", "error") is None

    asyncio.run(run_test())


def test_issue_results_without_pull_request_key_are_not_prs():
    async def run_test():
        guard, _ = _guard([_issue(9, "[Auto-Fix] TypeError", "abc123")], [])
        assert await guard.find_existing(REPO, "abc123", "error") is None

    asyncio.run(run_test())


def test_search_failure_reports_nothing_found():
    async def run_test():
        client = MagicMock()
        client.search_issues = AsyncMock(side_effect=GitHubAPIError(403, "GET", "/search/issues", "rate limit"))
        assert await DuplicateGuard(client).find_existing(REPO, "abc123", "error") is None

    asyncio.run(run_test())
