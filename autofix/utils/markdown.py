"""
Markdown Builders
=================
Titles, labels and bodies for published pull requests and issues.

Every body embeds the incident identifier verbatim: the duplicate guard
finds earlier artifacts by searching bodies for it.
"""
import re
from typing import Any, Dict, List, Optional, Tuple

from autofix.core.constants import CONSOLE_HISTORY_LIMIT, TITLE_PREFIX
from autofix.models.decision import AnalysisVerdict, RemediationDecision
from autofix.models.incident import IncidentRecord

_NEXT_CHUNK = re.compile(r"/_next/static/chunks/app/(.+)$")
_CHUNK_HASH = re.compile(r"-[a-f0-9]{16}\.js$")

SEVERITY_MARK = {
    "critical": "🔴",
    "high": "🟠",
    "medium": "🟡",
    "low": "🟢",
}


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _fenced(text: str, lang: str = "") -> str:
    return f"```{lang}\n{text}\n```"


def to_repository_link(source_file: str, owner: str, repo: str, branch: str = "main") -> Tuple[str, Optional[str]]:
    """
    Map a bundled Next.js chunk URL to its likely source path and blob URL.

    Returns
    -------
    (str, str or None)
        Display path and GitHub blob URL; the URL is None when the source
        file is not a recognisable app chunk.
    """
    if not source_file:
        return "", None
    match = _NEXT_CHUNK.search(source_file.split("?")[0])
    if not match or not owner or not repo:
        return source_file, None
    path = "src/app/" + _CHUNK_HASH.sub(".js", match.group(1))
    return path, f"https://github.com/{owner}/{repo}/blob/{branch}/{path}"


# ---------------------------------------------------------------------------
# Titles and labels
# ---------------------------------------------------------------------------
def build_title(incident: IncidentRecord) -> str:
    prefix = TITLE_PREFIX[incident.kind]
    if incident.kind == "vulnerability":
        return f"{prefix} Fix {incident.identifier}: {_truncate(incident.display_title, 80)}"
    return f"{prefix} {incident.error_type}: {_truncate(incident.message or incident.error_type, 80)}"


def build_issue_title(incident: IncidentRecord) -> str:
    prefix = TITLE_PREFIX[incident.kind]
    if incident.kind == "vulnerability":
        return f"{prefix} {incident.identifier}: {_truncate(incident.display_title, 80)}"
    return f"{prefix} {incident.error_type}: {_truncate(incident.message or incident.error_type, 80)}"


def build_issue_labels(incident: IncidentRecord, confidence: str) -> List[str]:
    severity = (incident.severity or "medium").lower()
    if incident.kind == "vulnerability":
        labels = ["security"]
        if severity == "critical":
            labels += ["critical", "priority:high"]
        elif severity == "high":
            labels.append("priority:high")
        return labels

    labels = ["bug", f"severity:{severity}"]
    if confidence == "low":
        labels += ["needs-investigation", "confidence:low"]
    else:
        labels += ["auto-fix-failed", f"confidence:{confidence}"]
    return labels


# ---------------------------------------------------------------------------
# Incident context sections
# ---------------------------------------------------------------------------
def format_breadcrumbs(breadcrumbs: List[Dict[str, Any]]) -> str:
    if not breadcrumbs:
        return "_No user actions recorded_"
    lines = []
    for i, crumb in enumerate(breadcrumbs, 1):
        kind = crumb.get("type", "action")
        detail = crumb.get("message") or crumb.get("target") or crumb.get("url") or ""
        stamp = crumb.get("timestamp")
        lines.append(f"{i}. **{kind}** {detail}" + (f" _({stamp})_" if stamp else ""))
    return "\n".join(lines)


def format_console_history(history: List[Dict[str, Any]]) -> str:
    if not history:
        return "_No console output recorded_"
    recent = history[-CONSOLE_HISTORY_LIMIT:]
    return _fenced("\n".join(f"[{entry.get('level', 'log')}] {entry.get('message', '')}" for entry in recent))


def format_pending_requests(requests: List[Dict[str, Any]]) -> str:
    if not requests:
        return "_No pending network requests_"
    lines = []
    for req in requests:
        duration = req.get("duration")
        suffix = f" ({duration}ms)" if duration is not None else ""
        lines.append(f"- `{req.get('method', 'GET')} {req.get('url', '')}`{suffix}")
    return "\n".join(lines)


def format_environment(environment: Dict[str, Any]) -> str:
    if not environment:
        return "_No environment details recorded_"
    rows = ["| Property | Value |", "|---|---|"]
    for key, value in environment.items():
        rows.append(f"| {key} | {str(value).replace('|', '/')} |")
    return "\n".join(rows)


def _footer(incident: IncidentRecord) -> str:
    return f"---\n\n*Automatically generated by Auto-Fix*\n*Identifier: {incident.identifier}*"


# ---------------------------------------------------------------------------
# Pull request bodies
# ---------------------------------------------------------------------------
def build_pr_body(
    incident: IncidentRecord,
    decision: RemediationDecision,
    verdict: Optional[AnalysisVerdict],
    owner: str = "",
    repo: str = "",
    branch: str = "main",
) -> str:
    if incident.kind == "vulnerability":
        return _build_security_pr_body(incident, decision, verdict)

    loc = incident.location
    display, url = to_repository_link(loc.file_path, owner, repo, branch)
    file_display = f"[{display}]({url})" if url else f"`{loc.file_path or 'unknown'}`"

    sections = [
        f"## 🔧 Auto-Fix: {incident.error_type}",
        f"This PR automatically fixes a {incident.severity} severity error detected in production.",
        "### Error Details",
        f"**Message:** {incident.message}\n**Type:** {incident.error_type}\n**Severity:** {incident.severity}",
        f"**Location:**\n- File: {file_display}\n- Line: {loc.line}\n- URL: {incident.page_url or 'unknown'}",
        "### Root Cause",
        (verdict.root_cause if verdict else "") or "_Not provided_",
        "### Fix Applied",
        f"**Category:** {verdict.category if verdict else 'other'}\n**Confidence:** {decision.confidence}",
    ]
    for candidate in decision.candidates:
        sections.append(
            f"**Changed File:** `{candidate.file_path}`\n"
            f"**Lines Changed:** {candidate.line_start}-{candidate.line_end}\n\n"
            f"<details>\n<summary>View Code Changes</summary>\n\n"
            f"**Before:**\n{_fenced(candidate.old_code)}\n\n"
            f"**After:**\n{_fenced(candidate.new_code)}\n\n</details>"
        )
    sections += ["### AI Analysis", decision.reasoning or "_No analysis provided_"]
    if verdict and verdict.requires_manual_review:
        sections += [
            "### ⚠️ Manual Review Required",
            "This fix has been flagged for manual review. Please carefully test the changes before merging.",
        ]
    if verdict and verdict.test_case:
        sections += ["### Suggested Test Case", _fenced(verdict.test_case)]
    sections += [
        "### Stack Trace",
        f"<details>\n<summary>View Full Stack Trace</summary>\n\n"
        f"{_fenced(incident.context.stack_trace or 'No stack trace available')}\n\n</details>",
        _footer(incident),
    ]
    return "\n\n".join(sections)


def _build_security_pr_body(
    incident: IncidentRecord, decision: RemediationDecision, verdict: Optional[AnalysisVerdict]
) -> str:
    advisory = incident.advisory
    severity = (incident.severity or "medium").lower()
    sections = [
        f"## {SEVERITY_MARK.get(severity, '⚠️')} Security Fix: {incident.title or advisory.package_name}",
        f"This PR automatically fixes a **{severity.upper()}** severity security vulnerability.",
        "### Vulnerability Details",
        f"**CVE:** {advisory.cve_id or incident.identifier}\n"
        + (f"**GHSA:** {advisory.ghsa_id}\n" if advisory.ghsa_id else "")
        + f"**Package:** `{advisory.package_name}`\n"
        f"**Installed:** {advisory.installed_version or 'unknown'}\n"
        f"**Patched:** {advisory.patched_version or 'none'}",
    ]
    if advisory.description:
        sections += ["### Description", advisory.description]
    sections += ["### Changes Made"]
    for candidate in decision.candidates:
        sections.append(
            f"#### `{candidate.file_path}`\n\n{candidate.rationale}\n\n"
            f"<details>\n<summary>View Code Changes</summary>\n\n"
            f"**Before:**\n{_fenced(candidate.old_code)}\n\n"
            f"**After:**\n{_fenced(candidate.new_code)}\n\n</details>"
        )
    if verdict and verdict.breaking_changes:
        sections += ["### ⚠️ Potential Breaking Changes", "\n".join(f"- {bc}" for bc in verdict.breaking_changes)]
    if verdict and verdict.test_suggestions:
        sections += ["### Suggested Tests", "\n".join(f"- [ ] {ts}" for ts in verdict.test_suggestions)]
    if verdict and verdict.requires_manual_review:
        sections += [
            "### ⚠️ Manual Review Required",
            "This fix has been flagged for manual review. Please carefully test the changes before merging.",
        ]
    sections += ["### AI Analysis", decision.reasoning or "_No analysis provided_", _footer(incident)]
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Issue bodies
# ---------------------------------------------------------------------------
def build_issue_body(incident: IncidentRecord, verdict: Optional[AnalysisVerdict], confidence: str) -> str:
    if incident.kind == "vulnerability":
        return _build_security_issue_body(incident, verdict)

    loc = incident.location
    ctx = incident.context
    reason = (
        "The automated analysis was not confident enough to propose a fix."
        if confidence == "low"
        else "An automatic fix could not be produced safely."
    )
    sections = [
        f"## 🐛 {incident.error_type}: {incident.message}",
        reason,
        "### Error Details",
        f"**Severity:** {incident.severity}\n**Confidence:** {confidence}\n"
        f"**Location:** `{loc.file_path or 'unknown'}:{loc.line}:{loc.column}`"
        + (f" in `{loc.function}`" if loc.function else "")
        + f"\n**Page:** {incident.page_url or 'unknown'}",
        "### Root Cause",
        (verdict.root_cause if verdict else "") or "_Not determined_",
        "### Analysis",
        (verdict.reasoning if verdict else "") or "_No analysis available_",
        "### Stack Trace",
        _fenced(ctx.stack_trace or "No stack trace available"),
        "### User Journey (Breadcrumbs)",
        format_breadcrumbs(ctx.breadcrumbs),
        f"### Console History (last {CONSOLE_HISTORY_LIMIT})",
        format_console_history(ctx.console_history),
        "### Pending Network Requests",
        format_pending_requests(ctx.pending_requests),
        "### Environment",
        format_environment(ctx.environment),
        _footer(incident),
    ]
    return "\n\n".join(sections)


def _build_security_issue_body(incident: IncidentRecord, verdict: Optional[AnalysisVerdict]) -> str:
    advisory = incident.advisory
    severity = (incident.severity or "medium").lower()
    sections = [
        f"## {SEVERITY_MARK.get(severity, '⚠️')} {incident.identifier}: {incident.title or advisory.package_name}",
        "### Vulnerability Details",
        f"**Package:** `{advisory.package_name}`\n"
        f"**Installed Version:** {advisory.installed_version or 'unknown'}\n"
        f"**Patched Version:** {advisory.patched_version or 'No patch available yet'}\n"
        f"**Severity:** {severity}"
        + (f"\n**GHSA:** {advisory.ghsa_id}" if advisory.ghsa_id else ""),
    ]
    if advisory.description:
        sections += ["### Description", advisory.description]
    sections += [
        "### Analysis",
        (verdict.reasoning or verdict.root_cause if verdict else "") or "_No analysis available_",
    ]
    if verdict and verdict.breaking_changes:
        sections += ["### Potential Breaking Changes", "\n".join(f"- {bc}" for bc in verdict.breaking_changes)]
    if verdict and verdict.test_suggestions:
        sections += ["### Suggested Tests", "\n".join(f"- [ ] {ts}" for ts in verdict.test_suggestions)]
    sections.append(_footer(incident))
    return "\n\n".join(sections)


def build_checks_failed_comment(failed: List[Any], requires_manual_review: bool = False) -> str:
    listing = "\n".join(f"- ❌ {c.name}: {c.conclusion}" for c in failed)
    follow_up = (
        "This PR was already flagged for manual review."
        if requires_manual_review
        else "Please review the failures before merging."
    )
    return (
        f"⚠️ **CI Checks Failed**\n\nThe following checks failed:\n{listing}\n\n"
        f"{follow_up}\n\nKeeping this PR as draft until checks pass."
    )


CHECKS_PASSED_AFTER_RETRY_COMMENT = (
    "✅ **CI Checks Passed After Auto-Retry**\n\n"
    "Initial checks failed due to linting issues. A follow-up commit was automatically "
    "pushed to fix formatting, and all checks now pass."
)
