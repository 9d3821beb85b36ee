"""
Decision Models
===============
AnalysisVerdict is the structured output requested from the completion
service for the initial analysis of an incident; RemediationDecision is what
the Decision Policy derives from it.

AnalysisVerdict fields:
    can_fix                — whether an automatic fix is possible
    action                 — create_pr | create_issue | skip (vulnerabilities)
    confidence             — high / medium / low
    category               — error category or vulnerability fix type
    root_cause             — root-cause analysis
    reasoning              — explanation of the decision
    suggested_fix          — single edit (errors)
    suggested_fixes        — list of edits (vulnerabilities)
    requires_manual_review — flag surfaced in the PR body
    test_case              — suggested regression test (errors)
    breaking_changes       — potential breaking changes (vulnerabilities)
    test_suggestions       — suggested verification steps (vulnerabilities)
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .fix_candidate import Confidence, FixCandidate

Action = Literal["create_pr", "create_issue", "skip"]


class ProposedEdit(BaseModel):
    file_path: str = Field(description="Path to the file that needs fixing, relative to the repository root")
    old_code: str = Field(description="Exact original code to replace")
    new_code: str = Field(description="Replacement code")
    line_start: int = Field(default=0, description="First line of old_code, 0 if unknown")
    line_end: int = Field(default=0, description="Last line of old_code, 0 if unknown")
    description: str = Field(default="", description="What this change does")

    def to_candidate(self, confidence: Confidence, category: str, reasoning: str = "") -> FixCandidate:
        return FixCandidate(
            file_path=self.file_path,
            line_start=self.line_start,
            line_end=self.line_end,
            old_code=self.old_code,
            new_code=self.new_code,
            rationale=self.description or reasoning,
            category=category,
            confidence=confidence,
        )


class AnalysisVerdict(BaseModel):
    can_fix: bool = Field(default=False, description="Whether the issue can be fixed automatically")
    action: Optional[str] = Field(
        default=None,
        description="create_pr (dependency update only), create_issue (needs a human) or skip (not affected)",
    )
    confidence: Confidence = Field(default="low", description="Confidence level in the fix")
    category: str = Field(default="other", description="Category of the error or type of fix required")
    root_cause: str = Field(default="", description="Root cause analysis")
    reasoning: str = Field(default="", description="Detailed explanation of the analysis")
    suggested_fix: Optional[ProposedEdit] = Field(default=None, description="Single suggested edit (errors)")
    suggested_fixes: List[ProposedEdit] = Field(default_factory=list, description="Suggested edits (vulnerabilities)")
    requires_manual_review: bool = Field(default=False, description="Whether the fix needs careful human review")
    test_case: Optional[str] = Field(default=None, description="Suggested test case to verify the fix")
    breaking_changes: List[str] = Field(default_factory=list, description="Potential breaking changes")
    test_suggestions: List[str] = Field(default_factory=list, description="Suggested verification steps")

    @property
    def edits(self) -> List[ProposedEdit]:
        """All proposed edits, single and list form combined."""
        edits = list(self.suggested_fixes)
        if self.suggested_fix is not None:
            edits.insert(0, self.suggested_fix)
        return edits


class RemediationDecision(BaseModel):
    action: Action
    candidates: List[FixCandidate] = []
    confidence: Confidence = "low"
    reasoning: str = ""
    downgraded: bool = False
