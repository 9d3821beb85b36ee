"""
LLM Prompts
===========
Centralised store for every prompt the core sends to the completion service.

Prompt Families:
    - Error analysis       → AnalysisVerdict (single suggested_fix)
    - Vulnerability analysis → AnalysisVerdict (action + suggested_fixes)
    - Fix application (Tier 3) → ModelAppliedFix
    - Judge                → ValidationVerdict

Prompt Design Rules:
    - Analysis prompts ask for the exact old snippet with line numbers, so
      the deterministic tiers can place the edit without a model
    - The Tier-3 prompt only allows locate-and-replace: the rest of the file
      must come back byte-for-byte
    - The judge sees a numbered window of the ORIGINAL and of the CANDIDATE
      around the edited lines, plus the previous turn's feedback; it is
      strict on location and lenient on formatting
"""
import logging
from typing import Any, Dict, List, Optional

from autofix.core.constants import JUDGE_WINDOW_PADDING
from autofix.models.fix_candidate import FixCandidate
from autofix.models.incident import IncidentRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------
ERROR_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert JavaScript/TypeScript error analyzer and fixer.\n"
    "Analyze a client-side error captured in production, decide whether it can be\n"
    "fixed automatically, and if so produce one precise code edit.\n"
    "\n"
    "RULES:\n"
    "1. Use the repository tools to read the failing file before proposing a fix.\n"
    "2. old_code must be copied EXACTLY from the file, with line_start/line_end.\n"
    "3. Change as few lines as possible. Do NOT refactor unrelated code.\n"
    "4. If the cause is outside the codebase (browser extension, third-party\n"
    "   script, network outage) set can_fix to false.\n"
    "5. When in doubt set can_fix to false and requires_manual_review to true.\n"
    "6. confidence is high only when the root cause is unambiguous."
)

SECURITY_ANALYSIS_SYSTEM_PROMPT = (
    "You are a dependency security analyst.\n"
    "Decide how a vulnerability advisory affects this repository.\n"
    "\n"
    "Decision matrix:\n"
    "- Patched version exists and only the manifest needs updating → action: create_pr\n"
    "- No patched version, or code/config changes are required → action: create_issue\n"
    "- Package is listed but never imported → action: skip\n"
    "\n"
    "RULES:\n"
    "1. Use the repository tools to check whether the package is actually imported.\n"
    "2. Pull requests are ONLY for dependency version updates. Each entry in\n"
    "   suggested_fixes must copy old_code exactly from the file.\n"
    "3. Be conservative: when in doubt, create an issue.\n"
    "4. List potential breaking changes of the upgrade."
)

FIX_APPLIER_SYSTEM_PROMPT = (
    "You apply one code change to a file.\n"
    "Locate the old code in the file (it may differ in whitespace or be on\n"
    "slightly different lines) and replace it with the new code.\n"
    "Return the COMPLETE file in fixed_content. Every other character of the\n"
    "file must be preserved exactly, including comments, blank lines and the\n"
    "trailing newline. Do not reformat, reorder or improve anything else."
)

JUDGE_SYSTEM_PROMPT = (
    "You are a code fix validator. Verify that an applied fix correctly\n"
    "implements the intended fix.\n"
    "\n"
    'Score "pass" if the new code is applied at the right location, the old\n'
    "code was replaced, and no unrelated code was modified or deleted.\n"
    "Formatting differences (whitespace, indentation, quotes) are acceptable.\n"
    "\n"
    'Score "fail" if wrong lines were modified, unrelated code was deleted or\n'
    "modified, the fix logic was changed or corrupted, or code structure broke.\n"
    "\n"
    "Be strict about location accuracy but lenient about formatting."
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def numbered_window(content: str, start: int, end: int) -> str:
    """Render lines [start, end) (0-based) of `content` with 1-based numbers."""
    lines = content.split("\n")
    start = max(0, start)
    end = min(len(lines), end)
    return "\n".join(f"{start + i + 1}: {line}" for i, line in enumerate(lines[start:end]))


def locate_line_range(content: str, candidate: FixCandidate) -> tuple[int, int]:
    """
    Return the 1-based (line_start, line_end) a candidate refers to.

    Uses the candidate's own range when it has one; otherwise the first
    occurrence of the trimmed old_code. Falls back to (1, 1).
    """
    if candidate.has_line_range:
        return candidate.line_start, candidate.line_end
    needle = candidate.old_code.strip()
    index = content.find(needle) if needle else -1
    if index < 0:
        return 1, 1
    line_start = content.count("\n", 0, index) + 1
    return line_start, line_start + needle.count("\n")


def _fenced(text: str, lang: str = "") -> str:
    return f"```{lang}\n{text}\n```"


def _format_breadcrumb_summary(breadcrumbs: List[Dict[str, Any]], limit: int = 10) -> str:
    if not breadcrumbs:
        return "_No user actions recorded_"
    recent = breadcrumbs[-limit:]
    return "\n".join(
        f"- {b.get('type', 'action')}: {b.get('message') or b.get('target') or b.get('url') or ''}"
        for b in recent
    )


# ---------------------------------------------------------------------------
# Analysis prompts
# ---------------------------------------------------------------------------
def build_error_analysis_prompt(incident: IncidentRecord, file_content: Optional[str]) -> str:
    """
    Build the analysis prompt for a production error.

    Parameters
    ----------
    incident : IncidentRecord
        The error incident.
    file_content : str or None
        Content of the failing source file; None when it could not be read
        (the model is told to work with reduced context).
    """
    loc = incident.location
    if file_content is not None:
        line_count = file_content.count("\n") + 1
        file_section = (
            f"## Source File: {loc.file_path}\n\n"
            f"{_fenced(numbered_window(file_content, 0, line_count))}"
        )
    else:
        file_section = (
            f"## Source File\n\nThe file `{loc.file_path or 'unknown'}` could not be read. "
            "Use the repository tools to locate the relevant code."
        )

    return (
        f"# Production Error Analysis Request\n\n"
        f"## Error\n\n"
        f"**Identifier:** {incident.identifier}\n"
        f"**Type:** {incident.error_type}\n"
        f"**Message:** {incident.message}\n"
        f"**Severity:** {incident.severity}\n"
        f"**Location:** {loc.file_path}:{loc.line}:{loc.column}"
        f"{f' in {loc.function}' if loc.function else ''}\n"
        f"**Page:** {incident.page_url or 'unknown'}\n\n"
        f"## Stack Trace\n\n{_fenced(incident.context.stack_trace or 'No stack trace available')}\n\n"
        f"## Recent User Actions\n\n{_format_breadcrumb_summary(incident.context.breadcrumbs)}\n\n"
        f"{file_section}\n\n"
        f"## Your Task\n\n"
        f"Determine the root cause and whether a safe, minimal fix exists. "
        f"If it does, return it as suggested_fix with exact old_code and its line numbers."
    )


def build_vulnerability_prompt(incident: IncidentRecord, manifest_content: Optional[str]) -> str:
    """Build the analysis prompt for a dependency vulnerability advisory."""
    advisory = incident.advisory
    manifest = (
        _fenced(manifest_content, "json") if manifest_content is not None
        else "_package.json could not be read; use the repository tools to find the manifest._"
    )
    ghsa_line = f"**GHSA ID:** {advisory.ghsa_id}\n" if advisory.ghsa_id else ""
    return (
        f"# Security Vulnerability Analysis Request\n\n"
        f"## Advisory\n\n"
        f"**Identifier:** {incident.identifier}\n"
        f"**CVE ID:** {advisory.cve_id or incident.identifier}\n"
        f"{ghsa_line}"
        f"**Package:** {advisory.package_name}\n"
        f"**Installed Version:** {advisory.installed_version or 'Unknown'}\n"
        f"**Patched Version:** {advisory.patched_version or 'No patch available yet'}\n"
        f"**Severity:** {incident.severity}\n"
        f"**Title:** {incident.title}\n\n"
        f"## Description\n\n{advisory.description or 'No description available'}\n\n"
        f"## Project's package.json\n\n{manifest}\n\n"
        f"## Your Task\n\n"
        f"1. Check whether `{advisory.package_name}` is actually imported anywhere.\n"
        f"2. Choose the action (create_pr / create_issue / skip) from the decision matrix.\n"
        f"3. For create_pr, return the manifest edits in suggested_fixes."
    )


# ---------------------------------------------------------------------------
# Fix application (Tier 3)
# ---------------------------------------------------------------------------
def build_apply_prompt(original_content: str, candidate: FixCandidate) -> str:
    return (
        f"Apply this fix to the file.\n\n"
        f"## File: {candidate.file_path}\n\n"
        f"## Description\n\n{candidate.rationale or 'No description provided'}\n\n"
        f"## Old Code\n\n{_fenced(candidate.old_code)}\n\n"
        f"## New Code\n\n{_fenced(candidate.new_code)}\n\n"
        f"## Original File Content\n\n{_fenced(original_content)}\n\n"
        f"Return the complete file with ONLY this change applied."
    )


# ---------------------------------------------------------------------------
# Judge
# ---------------------------------------------------------------------------
def build_judge_prompt(
    original_content: str,
    candidate_content: str,
    candidate: FixCandidate,
    previous_feedback: str = "",
) -> str:
    """
    Build the judge prompt comparing original and candidate windows.

    The window covers the edited lines padded by JUDGE_WINDOW_PADDING on
    each side. The candidate window is stretched by the change in line
    count so the whole replacement stays visible.
    """
    line_start, line_end = locate_line_range(original_content, candidate)
    window_start = max(0, line_start - 1 - JUDGE_WINDOW_PADDING)
    window_end = line_end + JUDGE_WINDOW_PADDING
    line_delta = len(candidate.new_code.split("\n")) - len(candidate.old_code.split("\n"))

    original_window = numbered_window(original_content, window_start, window_end)
    candidate_window = numbered_window(candidate_content, window_start, window_end + max(0, line_delta))

    feedback_section = f"## Previous Feedback\n\n{previous_feedback}\n\n" if previous_feedback else ""
    return (
        f"# Fix Validation Request\n\n"
        f"## File: {candidate.file_path}\n\n"
        f"## Intended Fix\n\n"
        f"**Lines to change:** {line_start}-{line_end}\n\n"
        f"**Old Code (should be replaced):**\n{_fenced(candidate.old_code)}\n\n"
        f"**New Code (should be applied):**\n{_fenced(candidate.new_code)}\n\n"
        f"## Original File Context\n\n{_fenced(original_window)}\n\n"
        f"## Applied Result Context\n\n{_fenced(candidate_window)}\n\n"
        f"{feedback_section}"
        f"## Your Task\n\n"
        f"Verify that the old code at lines {line_start}-{line_end} was replaced with the new code, "
        f"that no unrelated code was modified or deleted, and that the fix logic is preserved."
    )
