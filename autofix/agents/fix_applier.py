"""
Fix Applier
===========
Turns a FixCandidate (old snippet → new snippet) into a new file body.

Tiers, tried in order, cheapest and most exact first:

    1. Line-exact  — slice [line_start, line_end]; if it matches old_code after
                     whitespace normalisation, splice new_code's lines in place.
    2. String search — literal search of the trimmed old_code in the whole file.
                     One hit → replace it. Several hits → ambiguous, rejected.
                     No hit → whitespace-tolerant regex, first match replaced.
    3. Model-assisted — the completion service locates and replaces the
                     snippet and returns the complete file.

Line numbers drift between analysis and apply time, so Tier 2 rescues most
Tier 1 misses without a model call. Tier 3 is only trusted to locate and
replace. When every tier fails FixApplicationError is raised and nothing may
be published.

The applier is stateless: the same inputs always take the same path through
Tiers 1-2.
"""
import logging
import re
from typing import Optional

from autofix.core.errors import CompletionError, FixApplicationError
from autofix.llm.client import CompletionService
from autofix.llm.prompts import FIX_APPLIER_SYSTEM_PROMPT, build_apply_prompt
from autofix.models.fix_candidate import AppliedFix, FixCandidate, ModelAppliedFix

logger = logging.getLogger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def whitespace_tolerant_pattern(snippet: str) -> re.Pattern:
    """Regex matching `snippet` literally except that any whitespace run matches \\s+."""
    parts = [re.escape(part) for part in snippet.split()]
    return re.compile(r"\s+".join(parts))


class FixApplier:
    """
    Three-tier fix application.

    Usage:
        applier = FixApplier(completion=llm_client)
        applied = await applier.apply(original, candidate)
        applied.content, applied.tier
    """

    def __init__(self, completion: Optional[CompletionService] = None) -> None:
        self.completion = completion

    async def apply(self, original: str, candidate: FixCandidate, allow_model: bool = True) -> AppliedFix:
        """
        Apply `candidate` to `original`.

        Parameters
        ----------
        original : str
            Full original file text.
        candidate : FixCandidate
            The edit to apply.
        allow_model : bool
            When False only the deterministic tiers (1 and 2) are tried.

        Returns
        -------
        AppliedFix
            New file content and the tier that produced it.

        Raises
        ------
        FixApplicationError
            If no permitted tier could place the edit.
        """
        result = self.apply_line_range(original, candidate)
        if result is not None:
            logger.info("Tier 1 (line-exact) applied fix to %s", candidate.file_path)
            return AppliedFix(result, 1)

        result = self.apply_string_search(original, candidate)
        if result is not None:
            logger.info("Tier 2 (string search) applied fix to %s", candidate.file_path)
            return AppliedFix(result, 2)

        if allow_model and self.completion is not None:
            result = await self.apply_with_model(original, candidate)
            if result is not None:
                logger.info("Tier 3 (model-assisted) applied fix to %s", candidate.file_path)
                return AppliedFix(result, 3)

        logger.error("All permitted tiers failed for %s", candidate.file_path)
        raise FixApplicationError(candidate.file_path)

    # -----------------------------------------------------------------------
    # Tier 1
    # -----------------------------------------------------------------------
    def apply_line_range(self, original: str, candidate: FixCandidate) -> Optional[str]:
        if not candidate.has_line_range:
            return None
        lines = original.split("\n")
        start = candidate.line_start - 1
        end = candidate.line_end - 1
        if start < 0 or end >= len(lines) or start > end:
            logger.debug(
                "Tier 1: line range %d-%d out of bounds for %d lines",
                candidate.line_start, candidate.line_end, len(lines),
            )
            return None

        current = "\n".join(lines[start:end + 1])
        if normalize_whitespace(current) != normalize_whitespace(candidate.old_code):
            logger.debug("Tier 1: content at lines %d-%d does not match old_code", candidate.line_start, candidate.line_end)
            return None

        new_lines = candidate.new_code.split("\n")
        return "\n".join(lines[:start] + new_lines + lines[end + 1:])

    # -----------------------------------------------------------------------
    # Tier 2
    # -----------------------------------------------------------------------
    def apply_string_search(self, original: str, candidate: FixCandidate) -> Optional[str]:
        old = candidate.old_code.strip()
        if not old:
            return None
        new = candidate.new_code.strip()

        occurrences = original.count(old)
        if occurrences == 1:
            return original.replace(old, new, 1)
        if occurrences > 1:
            logger.warning(
                "Tier 2: old_code occurs %d times in %s, refusing to guess",
                occurrences, candidate.file_path,
            )
            return None

        if normalize_whitespace(old) not in normalize_whitespace(original):
            return None
        match = whitespace_tolerant_pattern(old).search(original)
        if match is None:
            return None
        return original[:match.start()] + new + original[match.end():]

    # -----------------------------------------------------------------------
    # Tier 3
    # -----------------------------------------------------------------------
    async def apply_with_model(self, original: str, candidate: FixCandidate) -> Optional[str]:
        try:
            response = await self.completion.complete(
                build_apply_prompt(original, candidate),
                ModelAppliedFix,
                system_prompt=FIX_APPLIER_SYSTEM_PROMPT,
                fast=True,
            )
        except CompletionError as e:
            logger.warning("Tier 3 failed for %s: %s", candidate.file_path, e)
            return None

        if not response.fixed_content.strip():
            logger.warning("Tier 3 returned empty content for %s", candidate.file_path)
            return None
        logger.debug("Tier 3 changes: %s", response.changes_made)
        return response.fixed_content
