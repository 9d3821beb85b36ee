"""
Decision Policy
===============
Maps the upstream analysis verdict onto one of {create_pr, create_issue, skip}.

Error incidents:
    can_fix and confidence != "low" → create_pr
    anything else                   → create_issue
    (low-confidence analyses still carry breadcrumbs and console history
    worth a human's attention, so they are never dropped)

Vulnerability incidents:
    the analysis chooses the action directly; when it omits one, can_fix
    decides between create_pr and create_issue. `skip` is valid (package
    listed but never imported). An unknown action becomes create_issue.

Override (both kinds):
    create_pr without any fix candidate is downgraded to create_issue.
"""
import logging

from autofix.core.constants import ACTION_CREATE_ISSUE, ACTION_CREATE_PR, ACTIONS
from autofix.models.decision import AnalysisVerdict, RemediationDecision

logger = logging.getLogger(__name__)


def decide(kind: str, verdict: AnalysisVerdict) -> RemediationDecision:
    """
    Compute the RemediationDecision for one run.

    Parameters
    ----------
    kind : str
        "error" or "vulnerability".
    verdict : AnalysisVerdict
        Structured analysis output.

    Returns
    -------
    RemediationDecision
        Action plus the FixCandidates to publish (for create_pr).
    """
    candidates = [
        edit.to_candidate(verdict.confidence, verdict.category, verdict.reasoning)
        for edit in verdict.edits
    ]

    if kind == "error":
        if verdict.can_fix and verdict.confidence != "low":
            action = ACTION_CREATE_PR
        else:
            action = ACTION_CREATE_ISSUE
    else:
        action = verdict.action or (ACTION_CREATE_PR if verdict.can_fix else ACTION_CREATE_ISSUE)
        if action not in ACTIONS:
            logger.warning("Unknown analysis action %r, defaulting to create_issue", action)
            action = ACTION_CREATE_ISSUE

    downgraded = False
    if action == ACTION_CREATE_PR and not candidates:
        logger.warning("Analysis chose create_pr without any fix, downgrading to create_issue")
        action = ACTION_CREATE_ISSUE
        downgraded = True

    return RemediationDecision(
        action=action,
        candidates=candidates if action == ACTION_CREATE_PR else [],
        confidence=verdict.confidence,
        reasoning=verdict.reasoning,
        downgraded=downgraded,
    )
