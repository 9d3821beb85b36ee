"""
Orchestrator Agent
==================
Drives one remediation run end to end:

    analyzing → Duplicate Guard → context → analysis → Decision Policy
              → { skip | create_issue | create_pr (Validation Loop → Publisher & CI Gate) }

Terminal statuses:
    pr_created     — PR opened (or an open one already existed)
    issue_created  — issue opened (or an open one already existed)
    not_affected   — vulnerability analysis chose skip
    fix_failed     — no tier could place an edit; nothing was published
    failed         — configuration missing, analysis unavailable, or a host
                     API error while publishing

Fault tolerance:
    - every terminal status is reported through the StatusReporter and
      recorded in the RunTracker, whatever the outcome
    - a configuration failure aborts before any host call
    - a missing source file only reduces the analysis context
"""
import logging
import time
from typing import Callable, Dict, List, Optional

import httpx

from autofix.agents.ci_monitor import CIMonitor
from autofix.agents.decision_policy import decide
from autofix.agents.fix_applier import FixApplier
from autofix.agents.fix_judge import ValidationLoop
from autofix.agents.publisher import Publisher
from autofix.core.config import MAX_JUDGE_TURNS, require_settings
from autofix.core.constants import (
    ACTION_CREATE_ISSUE,
    ACTION_SKIP,
    STATUS_ANALYZING,
    STATUS_FAILED,
    STATUS_FIX_FAILED,
    STATUS_ISSUE_CREATED,
    STATUS_NOT_AFFECTED,
    STATUS_PR_CREATED,
)
from autofix.core.errors import (
    CompletionError,
    ConfigurationError,
    FixApplicationError,
    GatewayError,
    GitHubAPIError,
)
from autofix.llm.client import CompletionService
from autofix.llm.prompts import (
    ERROR_ANALYSIS_SYSTEM_PROMPT,
    SECURITY_ANALYSIS_SYSTEM_PROMPT,
    build_error_analysis_prompt,
    build_vulnerability_prompt,
)
from autofix.models.artifact import RemediationOutcome
from autofix.models.decision import AnalysisVerdict, RemediationDecision
from autofix.models.fix_candidate import FixCandidate
from autofix.models.incident import IncidentRecord
from autofix.models.repository import RepositoryHandle
from autofix.services.code_gateway import CodeAccessGateway
from autofix.services.duplicate_guard import DuplicateGuard
from autofix.services.github_client import GitHubClient
from autofix.services.normalizer import Normalizer, PassthroughNormalizer
from autofix.services.run_tracker import RunTracker
from autofix.services.status_reporter import StatusReporter
from autofix.utils.markdown import to_repository_link

logger = logging.getLogger(__name__)

_MANIFEST_PATH = "package.json"

# Gateway answers that mean "no content" rather than file text
_ABSENCE_PREFIXES = ("File not found:", "Error:")
_ABSENCE_SUFFIXES = (" is not a file", " is not a UTF-8 text file")


def _primary_context_path(incident: IncidentRecord, repo: RepositoryHandle) -> str:
    """Repository path whose content seeds the analysis prompt."""
    if incident.kind == "vulnerability":
        return _MANIFEST_PATH
    path, _ = to_repository_link(incident.location.file_path, repo.owner, repo.repo, repo.default_branch)
    return path.lstrip("/")


def _group_by_file(candidates: List[FixCandidate]) -> Dict[str, List[FixCandidate]]:
    grouped: Dict[str, List[FixCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.file_path, []).append(candidate)
    return grouped


class Orchestrator:
    """
    Remediation workflow for a single incident.

    Collaborators are injected so that one process-wide completion client,
    normalizer, reporter and tracker are shared across runs, while host
    clients are opened per run through `client_factory`.

    Usage:
        orchestrator = Orchestrator(LLMClient(), build_normalizer(), StatusReporter(), RunTracker())
        outcome = await orchestrator.run(incident, repo)
    """

    def __init__(
        self,
        completion: CompletionService,
        normalizer: Optional[Normalizer] = None,
        status_reporter: Optional[StatusReporter] = None,
        run_tracker: Optional[RunTracker] = None,
        client_factory: Callable[[str], GitHubClient] = GitHubClient,
        max_judge_turns: int = MAX_JUDGE_TURNS,
    ) -> None:
        self.completion = completion
        self.normalizer = normalizer or PassthroughNormalizer()
        self.status_reporter = status_reporter or StatusReporter()
        self.run_tracker = run_tracker or RunTracker()
        self.client_factory = client_factory
        self.max_judge_turns = max_judge_turns

    async def run(self, incident: IncidentRecord, repo: RepositoryHandle) -> RemediationOutcome:
        """
        Execute the remediation workflow for `incident` against `repo`.

        Never raises for expected failures: they are mapped onto a terminal
        status, reported, and returned in the outcome.
        """
        start = time.time()
        self.run_tracker.start(incident.identifier, incident.kind)
        await self.status_reporter.update_status(incident, STATUS_ANALYZING)
        logger.info("Remediation started for %s %s on %s", incident.kind, incident.identifier, repo.full_name)

        try:
            outcome = await self._run(incident, repo)
        except ConfigurationError as e:
            logger.error("Configuration error for %s: %s", incident.identifier, e)
            outcome = RemediationOutcome(identifier=incident.identifier, status=STATUS_FAILED, error_message=str(e))
        except (GitHubAPIError, GatewayError, httpx.TransportError) as e:
            logger.error("Host API error for %s: %s", incident.identifier, e)
            outcome = RemediationOutcome(identifier=incident.identifier, status=STATUS_FAILED, error_message=str(e))

        await self._finish(incident, outcome)
        logger.info(
            "Remediation finished for %s: %s (%.1fs)", incident.identifier, outcome.status, time.time() - start,
        )
        return outcome

    async def _run(self, incident: IncidentRecord, repo: RepositoryHandle) -> RemediationOutcome:
        require_settings({"repository owner": repo.owner, "repository name": repo.repo, "repository token": repo.token})

        client = self.client_factory(repo.token)
        try:
            if not repo.default_branch:
                repo = repo.with_default_branch(await client.get_default_branch(repo.owner, repo.repo))

            # -- Step 1: idempotency --
            existing = await DuplicateGuard(client).find_existing(repo, incident.identifier, incident.kind)
            if existing is not None:
                status = STATUS_PR_CREATED if existing.kind == "pull_request" else STATUS_ISSUE_CREATED
                logger.info("Skipping %s, already tracked by %s", incident.identifier, existing.url)
                return RemediationOutcome(identifier=incident.identifier, status=status, existing=existing)

            # -- Step 2: analysis --
            gateway = CodeAccessGateway(repo.owner, repo.repo, token=repo.token, ref=repo.default_branch, client=client)
            await gateway.connect()
            try:
                verdict = await self._analyze(incident, repo, gateway)
            finally:
                await gateway.close()
            if verdict is None:
                return RemediationOutcome(
                    identifier=incident.identifier,
                    status=STATUS_FAILED,
                    error_message="Analysis unavailable",
                )

            # -- Step 3: decision --
            decision = decide(incident.kind, verdict)
            logger.info(
                "Decision for %s: %s (confidence=%s, candidates=%d%s)",
                incident.identifier, decision.action, decision.confidence, len(decision.candidates),
                ", downgraded" if decision.downgraded else "",
            )

            if decision.action == ACTION_SKIP:
                return RemediationOutcome(
                    identifier=incident.identifier, status=STATUS_NOT_AFFECTED, confidence=decision.confidence,
                )

            publisher = Publisher(client, CIMonitor(client), self.normalizer)

            if decision.action == ACTION_CREATE_ISSUE:
                issue = await publisher.publish_issue(repo, incident, verdict, decision.confidence)
                return RemediationOutcome(
                    identifier=incident.identifier,
                    status=STATUS_ISSUE_CREATED,
                    artifact=issue,
                    confidence=decision.confidence,
                )

            # -- Step 4: apply and validate --
            try:
                files = await self._build_fixed_files(client, repo, decision)
            except FixApplicationError as e:
                logger.error("Fix application failed for %s: %s", incident.identifier, e)
                return RemediationOutcome(
                    identifier=incident.identifier,
                    status=STATUS_FIX_FAILED,
                    confidence=decision.confidence,
                    error_message=str(e),
                )

            # -- Step 5: publish and gate --
            pr = await publisher.publish_pull_request(repo, incident, decision, verdict, files)
            return RemediationOutcome(
                identifier=incident.identifier,
                status=STATUS_PR_CREATED,
                artifact=pr,
                confidence=decision.confidence,
            )
        finally:
            await client.close()

    async def _analyze(
        self, incident: IncidentRecord, repo: RepositoryHandle, gateway: CodeAccessGateway
    ) -> Optional[AnalysisVerdict]:
        path = _primary_context_path(incident, repo)
        content = await self._read_context(gateway, path) if path else None
        if content is None:
            logger.info("No primary context for %s (%s), analysing with reduced context", incident.identifier, path or "-")

        if incident.kind == "vulnerability":
            prompt = build_vulnerability_prompt(incident, content)
            system_prompt = SECURITY_ANALYSIS_SYSTEM_PROMPT
        else:
            prompt = build_error_analysis_prompt(incident, content)
            system_prompt = ERROR_ANALYSIS_SYSTEM_PROMPT

        try:
            return await self.completion.complete(prompt, AnalysisVerdict, system_prompt=system_prompt, tools=gateway)
        except CompletionError as e:
            logger.error("Analysis failed for %s: %s", incident.identifier, e)
            return None

    @staticmethod
    async def _read_context(gateway: CodeAccessGateway, path: str) -> Optional[str]:
        blocks = await gateway.call_tool("read_file", {"path": path})
        text = "".join(block.text for block in blocks)
        if text.startswith(_ABSENCE_PREFIXES) or text in [path + suffix for suffix in _ABSENCE_SUFFIXES]:
            return None
        return text

    async def _build_fixed_files(
        self, client: GitHubClient, repo: RepositoryHandle, decision: RemediationDecision
    ) -> Dict[str, str]:
        """
        Fetch each target file and run its candidates through the Validation Loop.

        Candidates for the same file are applied in order, each on top of the
        previous one's validated content.

        Raises
        ------
        FixApplicationError
            The target file is missing or not text, or no tier could place an edit.
        """
        loop = ValidationLoop(
            FixApplier(self.completion), self.completion, self.normalizer, max_turns=self.max_judge_turns,
        )
        files: Dict[str, str] = {}
        for path, candidates in _group_by_file(decision.candidates).items():
            try:
                content = await client.get_file_text(repo.owner, repo.repo, path, ref=repo.default_branch)
            except GitHubAPIError as e:
                if e.not_found:
                    raise FixApplicationError(path, f"Target file {path} not found") from e
                raise
            except UnicodeDecodeError as e:
                raise FixApplicationError(path, f"Target file {path} is not UTF-8 text") from e
            for candidate in candidates:
                validated = await loop.run(content, candidate)
                logger.info(
                    "Validated fix for %s (tier %d, %d turn(s)%s)",
                    path, validated.tier, validated.turns, ", fallback" if validated.used_fallback else "",
                )
                content = validated.content
            files[path] = content
        return files

    async def record_failure(self, incident: IncidentRecord, message: str) -> RemediationOutcome:
        """Report a run that failed before (or outside) the workflow proper."""
        if self.run_tracker.get(incident.identifier) is None:
            self.run_tracker.start(incident.identifier, incident.kind)
        outcome = RemediationOutcome(identifier=incident.identifier, status=STATUS_FAILED, error_message=message)
        await self._finish(incident, outcome)
        return outcome

    async def _finish(self, incident: IncidentRecord, outcome: RemediationOutcome) -> None:
        url = outcome.url
        is_pr = outcome.status == STATUS_PR_CREATED
        await self.status_reporter.update_status(
            incident,
            outcome.status,
            pr_url=url if is_pr else None,
            issue_url=url if outcome.status == STATUS_ISSUE_CREATED else None,
            confidence=outcome.confidence,
            error_message=outcome.error_message or None,
        )
        self.run_tracker.update(incident.identifier, outcome.status, url=url, error=outcome.error_message)
