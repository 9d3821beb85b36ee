"""
Published Artifact Models
=========================
Pydantic models for what a run leaves behind on the source-control host.

PullRequestArtifact is the one model that is mutated after creation: the
CI gate writes `draft`, `checks`, `head_sha` and `lint_retry_attempted` as
check-runs resolve. Everything else is written once.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel

ChecksOutcome = Literal["all_passed", "some_failed", "timed_out", "skipped"]


class CheckRunOutcome(BaseModel):
    name: str
    status: str = "completed"
    conclusion: Optional[str] = None


class ChecksResult(BaseModel):
    outcome: ChecksOutcome
    failed_checks: List[CheckRunOutcome] = []
    reason: str = ""
    timeline: List[Dict[str, Any]] = []

    @property
    def all_passed(self) -> bool:
        return self.outcome == "all_passed"

    @property
    def some_failed(self) -> bool:
        return self.outcome == "some_failed"


class ExistingRef(BaseModel):
    kind: Literal["pull_request", "issue"]
    number: int
    url: str
    title: str = ""


class PullRequestArtifact(BaseModel):
    kind: Literal["pull_request"] = "pull_request"
    number: int
    url: str
    branch: str
    head_sha: str
    draft: bool = True
    checks: Optional[ChecksResult] = None
    lint_retry_attempted: bool = False
    comments: List[str] = []


class IssueArtifact(BaseModel):
    kind: Literal["issue"] = "issue"
    number: int
    url: str
    labels: List[str] = []


PublishedArtifact = Union[PullRequestArtifact, IssueArtifact]


class RemediationOutcome(BaseModel):
    identifier: str
    status: str
    artifact: Optional[PublishedArtifact] = None
    existing: Optional[ExistingRef] = None
    confidence: Optional[str] = None
    error_message: str = ""

    @property
    def duplicate(self) -> bool:
        return self.existing is not None

    @property
    def url(self) -> str:
        if self.artifact is not None:
            return self.artifact.url
        if self.existing is not None:
            return self.existing.url
        return ""
