"""
Constants
Centralised storage for statuses, title prefixes, labels and Git naming rules.
"""
import re

# Terminal and transitional statuses reported to the system of record
STATUS_ANALYZING = "analyzing"
STATUS_PR_CREATED = "pr_created"
STATUS_ISSUE_CREATED = "issue_created"
STATUS_NOT_AFFECTED = "not_affected"
STATUS_FIX_FAILED = "fix_failed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = {
    STATUS_PR_CREATED,
    STATUS_ISSUE_CREATED,
    STATUS_NOT_AFFECTED,
    STATUS_FIX_FAILED,
    STATUS_FAILED,
}

# Title prefixes double as the duplicate-guard match key
TITLE_PREFIX = {
    "error": "[Auto-Fix]",
    "vulnerability": "[Security]",
}

# Decision actions
ACTION_CREATE_PR = "create_pr"
ACTION_CREATE_ISSUE = "create_issue"
ACTION_SKIP = "skip"
ACTIONS = (ACTION_CREATE_PR, ACTION_CREATE_ISSUE, ACTION_SKIP)

# Failing check names that the lint auto-retry is allowed to address
LINT_CHECK_PATTERN = re.compile(r"lint|eslint|prettier|format|style|code.?quality", re.IGNORECASE)

LINT_RETRY_COMMIT_MESSAGE = "chore: fix linting and formatting issues"
ERROR_BRANCH_PREFIX = "auto-fix"
SECURITY_BRANCH_PREFIX = "security-fix"
FILE_MODE_BLOB = "100644"

# Number of lines shown around the edited range in judge prompts
JUDGE_WINDOW_PADDING = 5

# Console entries included in issue bodies
CONSOLE_HISTORY_LIMIT = 10
