"""
Validation Loop
===============
Bounded judge-and-retry wrapper around the Fix Applier.

Each turn (at most max_turns, default 3):
    (a) apply the candidate with the Fix Applier (all tiers)
    (b) normalize the result (format + lint-autofix)
    (c) ask the judge to compare the original and candidate windows

A `pass` ends the loop with the candidate content. A `fail` only changes the
next judge prompt (its feedback is appended); the applier is stateless and
is re-run with identical inputs.

When every turn fails, the loop falls back to deterministic-tier content
(Tier 1/2 only), reusing a deterministic result already produced by one of
the turns instead of re-running the applier. Model-assisted rewrites are
therefore bounded by max_turns.

Degraded modes:
    - judge unavailable (CompletionError) → that turn's candidate is accepted
    - normalizer failure → unnormalized content is used
    - FixApplicationError from the applier propagates (nothing to publish)
"""
import logging
from typing import Optional

from autofix.agents.fix_applier import FixApplier
from autofix.core.config import MAX_JUDGE_TURNS
from autofix.core.errors import CompletionError
from autofix.llm.client import CompletionService
from autofix.llm.prompts import JUDGE_SYSTEM_PROMPT, build_judge_prompt
from autofix.models.fix_candidate import AppliedFix, FixCandidate, ValidatedFix, ValidationVerdict
from autofix.services.normalizer import Normalizer, PassthroughNormalizer

logger = logging.getLogger(__name__)


class ValidationLoop:
    """
    Judge-validated fix application.

    Usage:
        loop = ValidationLoop(applier, judge=llm_client, normalizer=normalizer)
        validated = await loop.run(original, candidate)
    """

    def __init__(
        self,
        applier: FixApplier,
        judge: CompletionService,
        normalizer: Optional[Normalizer] = None,
        max_turns: int = MAX_JUDGE_TURNS,
    ) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.applier = applier
        self.judge = judge
        self.normalizer = normalizer or PassthroughNormalizer()
        self.max_turns = max_turns

    async def run(self, original: str, candidate: FixCandidate) -> ValidatedFix:
        """
        Apply and validate `candidate` against `original`.

        Returns
        -------
        ValidatedFix
            Content to publish; `used_fallback` is True when the judge never
            passed and deterministic-tier content was used instead.

        Raises
        ------
        FixApplicationError
            When the applier cannot place the edit at all, or when the
            fallback finds no deterministic placement.
        """
        feedback = ""
        verdict: Optional[ValidationVerdict] = None
        deterministic: Optional[AppliedFix] = None

        for turn in range(1, self.max_turns + 1):
            applied = await self.applier.apply(original, candidate)
            if applied.tier in (1, 2):
                deterministic = applied
            content = await self._normalize(applied.content, candidate.file_path)

            try:
                verdict = await self.judge.complete(
                    build_judge_prompt(original, content, candidate, previous_feedback=feedback),
                    ValidationVerdict,
                    system_prompt=JUDGE_SYSTEM_PROMPT,
                    fast=True,
                )
            except CompletionError as e:
                logger.warning(
                    "Judge unavailable on turn %d for %s, accepting candidate: %s",
                    turn, candidate.file_path, e,
                )
                return ValidatedFix(content=content, tier=applied.tier, turns=turn)

            if verdict.passed:
                logger.info("Judge passed fix for %s on turn %d/%d", candidate.file_path, turn, self.max_turns)
                return ValidatedFix(content=content, tier=applied.tier, turns=turn, verdict=verdict)

            logger.warning(
                "Judge failed fix for %s on turn %d/%d: %s",
                candidate.file_path, turn, self.max_turns, "; ".join(verdict.issues) or verdict.feedback,
            )
            feedback = verdict.feedback

        logger.warning(
            "Judge loop exhausted for %s, falling back to deterministic placement", candidate.file_path,
        )
        if deterministic is None:
            deterministic = await self.applier.apply(original, candidate, allow_model=False)
        content = await self._normalize(deterministic.content, candidate.file_path)
        return ValidatedFix(
            content=content,
            tier=deterministic.tier,
            turns=self.max_turns,
            verdict=verdict,
            used_fallback=True,
        )

    async def _normalize(self, content: str, file_path: str) -> str:
        try:
            result = await self.normalizer.normalize(content, file_path)
        except Exception as e:
            logger.warning("Normalize failed for %s, using unformatted content: %s", file_path, e)
            return content
        for diagnostic in result.lint_diagnostics:
            logger.debug("Lint %s: %s", file_path, diagnostic)
        return result.formatted_content
