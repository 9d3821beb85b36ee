"""
CI Monitor Agent
================
Polls the check-runs of a pull request's head commit until they resolve.

Outcomes:
    all_passed  — every check completed with conclusion "success"
    some_failed — all checks completed, at least one with another conclusion
    timed_out   — the polling budget ran out first
    skipped     — 403 on the check-runs endpoint (missing permission), or
                  too many consecutive polling errors

Cadence: CI_POLL_EMPTY_INTERVAL_SECONDS while no check has appeared yet,
CI_POLL_INTERVAL_SECONDS while checks are running. Waiting uses
asyncio.sleep, so the poll only suspends its own workflow and is
cancellable.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from autofix.core.config import (
    CI_MAX_CONSECUTIVE_ERRORS,
    CI_POLL_EMPTY_INTERVAL_SECONDS,
    CI_POLL_INTERVAL_SECONDS,
    CI_POLL_TIMEOUT_SECONDS,
)
from autofix.core.errors import GitHubAPIError
from autofix.models.artifact import CheckRunOutcome, ChecksResult
from autofix.services.github_client import GitHubClient

logger = logging.getLogger(__name__)


class CIMonitor:
    """
    Agent that waits for CI check-runs on a commit.
    """

    def __init__(
        self,
        client: GitHubClient,
        timeout_seconds: float = CI_POLL_TIMEOUT_SECONDS,
        interval_seconds: float = CI_POLL_INTERVAL_SECONDS,
        empty_interval_seconds: float = CI_POLL_EMPTY_INTERVAL_SECONDS,
        max_consecutive_errors: int = CI_MAX_CONSECUTIVE_ERRORS,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.empty_interval_seconds = empty_interval_seconds
        self.max_consecutive_errors = max_consecutive_errors
        self.timeline: List[Dict[str, Any]] = []
        self._poll_start = 0

    def _add_timeline_event(self, head_sha: str, status: str, checks: int = 0, duration: float = 0.0) -> None:
        self.timeline.append({
            "head_sha": head_sha,
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
            "duration": round(duration, 2),
        })

    def _result(self, head_sha: str, outcome: str, start: float, **fields: Any) -> ChecksResult:
        self._add_timeline_event(head_sha, outcome, duration=time.time() - start)
        return ChecksResult(outcome=outcome, timeline=self.timeline[self._poll_start:], **fields)

    def _remaining(self, start: float) -> float:
        return max(0.0, self.timeout_seconds - (time.time() - start))

    async def wait_for_checks(self, owner: str, repo: str, head_sha: str) -> ChecksResult:
        """
        Poll check-runs for `head_sha` until they resolve or the budget ends.

        Parameters
        ----------
        owner, repo : str
            Repository coordinates.
        head_sha : str
            Commit whose check-runs are polled.

        Returns
        -------
        ChecksResult
            One of all_passed / some_failed / timed_out / skipped.
        """
        start = time.time()
        # result timelines cover this poll only; get_timeline keeps every poll
        self._poll_start = len(self.timeline)
        consecutive_errors = 0
        last_status = ""
        logger.info("Polling check runs on commit %s", head_sha[:7])

        while (time.time() - start) < self.timeout_seconds:
            try:
                check_runs = await self.client.list_check_runs(owner, repo, head_sha)
                consecutive_errors = 0
            except (GitHubAPIError, httpx.HTTPError) as e:
                if isinstance(e, GitHubAPIError) and e.forbidden:
                    logger.warning("Cannot access check runs (403), skipping check verification")
                    return self._result(head_sha, "skipped", start, reason="Missing checks permission (403)")
                consecutive_errors += 1
                logger.error("Error fetching check runs (%d/%d): %s", consecutive_errors, self.max_consecutive_errors, e)
                if consecutive_errors >= self.max_consecutive_errors:
                    return self._result(head_sha, "skipped", start, reason=f"Too many errors: {e}")
                await asyncio.sleep(min(self.interval_seconds, self._remaining(start)))
                continue

            if not check_runs:
                status = "queued"
                wait = self.empty_interval_seconds
            elif all(run.get("status") == "completed" for run in check_runs):
                failed = [
                    CheckRunOutcome(name=run.get("name", "unknown"), status="completed", conclusion=run.get("conclusion"))
                    for run in check_runs
                    if run.get("conclusion") != "success"
                ]
                if failed:
                    logger.info("%d of %d check(s) failed", len(failed), len(check_runs))
                    return self._result(head_sha, "some_failed", start, failed_checks=failed)
                logger.info("All %d checks passed", len(check_runs))
                return self._result(head_sha, "all_passed", start)
            else:
                status = "in_progress"
                wait = self.interval_seconds

            if status != last_status:
                logger.info("CI status update: %s (%d checks)", status, len(check_runs))
                self._add_timeline_event(head_sha, status, checks=len(check_runs), duration=time.time() - start)
                last_status = status
            await asyncio.sleep(min(wait, self._remaining(start)))

        logger.info("Check polling timed out after %ss", self.timeout_seconds)
        return self._result(head_sha, "timed_out", start)

    def get_timeline(self) -> List[Dict[str, Any]]:
        return self.timeline
