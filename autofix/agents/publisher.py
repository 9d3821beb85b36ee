"""
Publisher & CI Gate
===================
Publishes a run's result to the source-control host.

Pull request state machine:

    DRAFTING → DRAFT_OPEN → POLLING_CHECKS → READY_FOR_REVIEW
                                           → RETRY_LINT_FIX → POLLING_CHECKS
                                           → CHECKS_FAILED
                                           → POLL_TIMEOUT

Drafting builds exactly one commit with Git data primitives, in order:
blob (per changed file) → tree (base tree + blob entries) → commit (parent =
current head of the default branch) → ref (new branch) → draft PR.

CI gate:
    all_passed   → draft flipped off
    some_failed  → if a failing check name looks like lint/format, re-fetch
                   the branch head, normalize, and push ONE follow-up commit
                   if that changed anything; re-poll once. Otherwise, or if
                   the retry still fails, comment with the failed checks and
                   leave the PR as draft.
    timed_out / skipped → PR left as draft, outcome recorded

Issues are created directly with severity-derived labels; a 422 on labels
(unknown label, no permission) retries once without them.
"""
import logging
import re
import time
from typing import Dict, List, Optional

import httpx

from autofix.agents.ci_monitor import CIMonitor
from autofix.core.constants import (
    ERROR_BRANCH_PREFIX,
    FILE_MODE_BLOB,
    LINT_CHECK_PATTERN,
    LINT_RETRY_COMMIT_MESSAGE,
    SECURITY_BRANCH_PREFIX,
)
from autofix.core.errors import GitHubAPIError
from autofix.models.artifact import ChecksResult, IssueArtifact, PullRequestArtifact
from autofix.models.decision import AnalysisVerdict, RemediationDecision
from autofix.models.incident import IncidentRecord
from autofix.models.repository import RepositoryHandle
from autofix.services.github_client import GitHubClient
from autofix.services.normalizer import Normalizer, PassthroughNormalizer
from autofix.utils.markdown import (
    CHECKS_PASSED_AFTER_RETRY_COMMENT,
    build_checks_failed_comment,
    build_issue_body,
    build_issue_labels,
    build_issue_title,
    build_pr_body,
    build_title,
)

logger = logging.getLogger(__name__)

_UNSAFE_REF_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def build_branch_name(incident: IncidentRecord, category: str, now_ms: Optional[int] = None) -> str:
    """auto-fix/{category}-{ms} for errors, security-fix/{safe id}-{ms} for vulnerabilities."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    if incident.kind == "vulnerability":
        safe_id = _UNSAFE_REF_CHARS.sub("-", incident.identifier).strip("-").lower()
        return f"{SECURITY_BRANCH_PREFIX}/{safe_id}-{stamp}"
    safe_category = _UNSAFE_REF_CHARS.sub("-", category or "fix").strip("-").lower()
    return f"{ERROR_BRANCH_PREFIX}/{safe_category}-{stamp}"


def build_commit_message(incident: IncidentRecord, decision: RemediationDecision) -> str:
    files = ", ".join(sorted({c.file_path for c in decision.candidates}))
    if incident.kind == "vulnerability":
        package = incident.advisory.package_name if incident.advisory else "dependency"
        return f"fix(security): update {package} to address {incident.identifier}\n\nFiles: {files}"
    return (
        f"fix: resolve {incident.error_type} in {files}\n\n"
        f"{incident.message}\n\nIdentifier: {incident.identifier}"
    )


class Publisher:
    """
    Creates pull requests and issues, and gates draft PRs on CI.

    Usage:
        publisher = Publisher(client, CIMonitor(client), normalizer)
        pr = await publisher.publish_pull_request(repo, incident, decision, verdict, files)
    """

    def __init__(
        self,
        client: GitHubClient,
        ci_monitor: Optional[CIMonitor] = None,
        normalizer: Optional[Normalizer] = None,
    ) -> None:
        self.client = client
        self.ci_monitor = ci_monitor or CIMonitor(client)
        self.normalizer = normalizer or PassthroughNormalizer()

    # -----------------------------------------------------------------------
    # Pull requests
    # -----------------------------------------------------------------------
    async def publish_pull_request(
        self,
        repo: RepositoryHandle,
        incident: IncidentRecord,
        decision: RemediationDecision,
        verdict: Optional[AnalysisVerdict],
        files: Dict[str, str],
    ) -> PullRequestArtifact:
        """
        Commit `files` to a new branch, open a draft PR and run the CI gate.

        Parameters
        ----------
        repo : RepositoryHandle
            Target repository; default_branch must be resolved.
        incident : IncidentRecord
            Incident being remediated.
        decision : RemediationDecision
            The create_pr decision (candidates drive the PR body).
        verdict : AnalysisVerdict or None
            Analysis output, for the PR body.
        files : dict
            file path → validated new content.

        Returns
        -------
        PullRequestArtifact
            Final PR state after the CI gate.

        Raises
        ------
        GitHubAPIError
            If any drafting step fails; the CI gate itself never raises.
        """
        owner, name, base = repo.owner, repo.repo, repo.default_branch
        category = decision.candidates[0].category if decision.candidates else "fix"

        base_sha = await self.client.get_branch_sha(owner, name, base)
        head_sha = await self._commit_files(
            owner, name, base_sha, files, build_commit_message(incident, decision),
        )
        branch = build_branch_name(incident, category)
        await self.client.create_ref(owner, name, branch, head_sha)
        logger.info("Created branch %s at %s", branch, head_sha[:7])

        pr_data = await self.client.create_pull(
            owner, name,
            title=build_title(incident),
            body=build_pr_body(incident, decision, verdict, owner, name, base),
            head=branch,
            base=base,
            draft=True,
        )
        pr = PullRequestArtifact(
            number=pr_data["number"],
            url=pr_data.get("html_url", ""),
            branch=branch,
            head_sha=head_sha,
            draft=True,
        )
        logger.info("Opened draft PR #%d: %s", pr.number, pr.url)

        requires_review = bool(verdict and verdict.requires_manual_review)
        await self.gate_on_checks(repo, pr, list(files), requires_review)
        return pr

    async def _commit_files(
        self, owner: str, repo: str, parent_sha: str, files: Dict[str, str], message: str
    ) -> str:
        """blob → tree → commit on top of parent_sha. Returns the new commit sha."""
        base_tree = await self.client.get_commit_tree_sha(owner, repo, parent_sha)
        entries = []
        for path, content in files.items():
            blob_sha = await self.client.create_blob(owner, repo, content)
            entries.append({"path": path, "mode": FILE_MODE_BLOB, "type": "blob", "sha": blob_sha})
        tree_sha = await self.client.create_tree(owner, repo, base_tree, entries)
        return await self.client.create_commit(owner, repo, message, tree_sha, [parent_sha])

    # -----------------------------------------------------------------------
    # CI gate
    # -----------------------------------------------------------------------
    async def gate_on_checks(
        self,
        repo: RepositoryHandle,
        pr: PullRequestArtifact,
        changed_paths: List[str],
        requires_manual_review: bool = False,
    ) -> PullRequestArtifact:
        """Poll checks for pr.head_sha and move the PR through the gate. Mutates `pr`."""
        result = await self.ci_monitor.wait_for_checks(repo.owner, repo.repo, pr.head_sha)
        pr.checks = result

        if result.all_passed:
            await self._mark_ready(repo, pr)
            return pr

        if not result.some_failed:
            logger.info("PR #%d left as draft (checks %s: %s)", pr.number, result.outcome, result.reason or "-")
            return pr

        lint_failures = [c for c in result.failed_checks if LINT_CHECK_PATTERN.search(c.name)]
        if lint_failures:
            logger.info(
                "Lint-related checks failed on PR #%d (%s), attempting auto-retry",
                pr.number, ", ".join(c.name for c in lint_failures),
            )
            retry_result = await self._retry_lint_fix(repo, pr, changed_paths)
            if retry_result is not None:
                pr.checks = retry_result
                if retry_result.all_passed:
                    await self._mark_ready(repo, pr)
                    await self._comment(repo, pr, CHECKS_PASSED_AFTER_RETRY_COMMENT)
                    return pr
                if not retry_result.some_failed:
                    return pr
                result = retry_result

        await self._comment(repo, pr, build_checks_failed_comment(result.failed_checks, requires_manual_review))
        logger.info("PR #%d kept as draft after failed checks", pr.number)
        return pr

    async def _retry_lint_fix(
        self, repo: RepositoryHandle, pr: PullRequestArtifact, changed_paths: List[str]
    ) -> Optional[ChecksResult]:
        """
        Re-normalize the branch head and push one follow-up commit.

        Returns None when normalizing changed nothing or the retry commit
        could not be pushed; otherwise the result of the second poll.
        """
        pr.lint_retry_attempted = True
        owner, name = repo.owner, repo.repo
        try:
            updates: Dict[str, str] = {}
            for path in changed_paths:
                current = await self.client.get_file_text(owner, name, path, ref=pr.branch)
                normalized = await self.normalizer.normalize(current, path)
                if normalized.formatted_content != current:
                    updates[path] = normalized.formatted_content

            if not updates:
                logger.info("Normalizing PR #%d head changed nothing, no retry commit", pr.number)
                return None

            head_sha = await self.client.get_branch_sha(owner, name, pr.branch)
            new_sha = await self._commit_files(owner, name, head_sha, updates, LINT_RETRY_COMMIT_MESSAGE)
            await self.client.update_ref(owner, name, pr.branch, new_sha)
        except Exception as e:
            logger.error("Lint auto-retry failed for PR #%d: %s", pr.number, e)
            return None

        pr.head_sha = new_sha
        logger.info("Pushed lint retry commit %s to %s, polling checks again", new_sha[:7], pr.branch)
        return await self.ci_monitor.wait_for_checks(owner, name, new_sha)

    async def _mark_ready(self, repo: RepositoryHandle, pr: PullRequestArtifact) -> None:
        try:
            await self.client.update_pull(repo.owner, repo.repo, pr.number, draft=False)
            pr.draft = False
            logger.info("PR #%d marked ready for review", pr.number)
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.warning("Could not mark PR #%d ready for review: %s", pr.number, e)

    async def _comment(self, repo: RepositoryHandle, pr: PullRequestArtifact, body: str) -> None:
        try:
            await self.client.create_issue_comment(repo.owner, repo.repo, pr.number, body)
            pr.comments.append(body)
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.warning("Could not comment on PR #%d: %s", pr.number, e)

    # -----------------------------------------------------------------------
    # Issues
    # -----------------------------------------------------------------------
    async def publish_issue(
        self,
        repo: RepositoryHandle,
        incident: IncidentRecord,
        verdict: Optional[AnalysisVerdict],
        confidence: str,
    ) -> IssueArtifact:
        """
        Create an issue for manual triage.

        Raises
        ------
        GitHubAPIError
            If creation fails (after the label-less retry on 422).
        """
        title = build_issue_title(incident)
        body = build_issue_body(incident, verdict, confidence)
        labels = build_issue_labels(incident, confidence)
        try:
            data = await self.client.create_issue(repo.owner, repo.repo, title, body, labels)
        except GitHubAPIError as e:
            if e.status_code != 422:
                raise
            logger.warning("Issue creation rejected labels (422), retrying without labels")
            labels = []
            data = await self.client.create_issue(repo.owner, repo.repo, title, body)

        issue = IssueArtifact(number=data["number"], url=data.get("html_url", ""), labels=labels)
        logger.info("Created issue #%d: %s", issue.number, issue.url)
        return issue
