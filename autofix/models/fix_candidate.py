"""
Fix Candidate Models
====================
Pydantic models flowing through the Fix Applier and the Validation Loop.

FixCandidate fields:
    file_path   — repository-relative path of the file to edit
    line_start  — 1-based first line of old_code (0 = unknown)
    line_end    — 1-based last line of old_code (0 = unknown)
    old_code    — snippet expected at the target location
    new_code    — replacement snippet
    rationale   — free-text explanation from the analysis step
    category    — analysis category (null_reference, dependency_update, ...)
    confidence  — high / medium / low

ValidationVerdict is the judge's structured output; a `fail` verdict's
feedback is carried into the next judge prompt only and never mutates the
candidate.
"""
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Confidence = Literal["high", "medium", "low"]


class FixCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    line_start: int = 0
    line_end: int = 0
    old_code: str
    new_code: str
    rationale: str = ""
    category: str = "other"
    confidence: Confidence = "medium"

    @property
    def has_line_range(self) -> bool:
        return self.line_start > 0 and self.line_end > 0


class ValidationVerdict(BaseModel):
    score: Literal["pass", "fail"] = Field(
        description="pass if the fix was applied at the right location without collateral damage",
    )
    issues: List[str] = Field(default_factory=list, description="Concrete problems found, empty on pass")
    feedback: str = Field(default="", description="Guidance for the next attempt when score is fail")

    @property
    def passed(self) -> bool:
        return self.score == "pass"


class ModelAppliedFix(BaseModel):
    """Structured output of a model-assisted (Tier 3) application."""
    fixed_content: str = Field(description="The complete file content with only the requested change applied")
    changes_made: str = Field(description="One-sentence summary of what was changed")


@dataclass
class AppliedFix:
    """Result of one Fix Applier call: new file body plus the tier that produced it."""
    content: str
    tier: int


@dataclass
class ValidatedFix:
    """Result of the Validation Loop for a single candidate."""
    content: str
    tier: int
    turns: int
    verdict: Optional[ValidationVerdict] = None
    used_fallback: bool = False
