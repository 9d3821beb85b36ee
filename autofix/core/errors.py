"""
Errors
======
Exception hierarchy for a remediation run.

The orchestrator maps each class onto a terminal status:
    ConfigurationError   → failed (before any host mutation)
    FixApplicationError  → fix_failed (nothing is published)
    CompletionError      → failed (analysis) / judge outage is tolerated
    GitHubAPIError       → failed (during publish)
"""


class RemediationError(Exception):
    """Base class for all remediation failures."""


class ConfigurationError(RemediationError):
    """Missing credentials or configuration."""


class FixApplicationError(RemediationError):
    """None of the fix-application tiers could place the edit."""

    def __init__(self, file_path: str, message: str = "") -> None:
        self.file_path = file_path
        super().__init__(message or f"Could not apply fix to {file_path}: all tiers failed")


class CompletionError(RemediationError):
    """No completion provider returned a schema-valid structured response."""


class GatewayError(RemediationError):
    """Transport-level Code Access Gateway failure."""


class ToolArgumentError(GatewayError):
    """Unknown tool name or malformed tool arguments."""


class GitHubAPIError(RemediationError):
    """Non-2xx response from the source-control host."""

    def __init__(self, status_code: int, method: str, path: str, message: str = "") -> None:
        self.status_code = status_code
        self.method = method
        self.path = path
        self.message = message
        super().__init__(f"GitHub API {method} {path} failed with HTTP {status_code}: {message}")

    @property
    def not_found(self) -> bool:
        return self.status_code == 404

    @property
    def forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429
