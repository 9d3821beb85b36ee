"""
Normalize Service
=================
Adapter for the external formatting / lint-autofix step:

    normalize(code, file_path) -> NormalizeResult(formatted_content, lint_diagnostics, was_changed)

The core treats formatters and linters as black boxes. Two adapters ship:

    PassthroughNormalizer — returns the code unchanged (default)
    CommandNormalizer     — pipes the code through FORMATTER_COMMAND on stdin
                            and collects LINT_COMMAND output as diagnostics

Commands are templates with a `{file_path}` placeholder, e.g.
    FORMATTER_COMMAND="npx prettier --stdin-filepath {file_path}"

A failing formatter never fails the run: the caller keeps the unformatted
content and the failure is reported as a diagnostic.
"""
import asyncio
import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from autofix.core.config import FORMATTER_COMMAND, LINT_COMMAND, NORMALIZE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class NormalizeResult:
    formatted_content: str
    lint_diagnostics: List[str] = field(default_factory=list)
    was_changed: bool = False


class Normalizer(Protocol):
    async def normalize(self, code: str, file_path: str) -> NormalizeResult:
        ...


class PassthroughNormalizer:
    """No formatter configured: content is returned as-is."""

    async def normalize(self, code: str, file_path: str) -> NormalizeResult:
        return NormalizeResult(formatted_content=code)


class CommandNormalizer:
    """
    Runs external formatter / linter commands over stdin.

    Parameters
    ----------
    formatter_command : str
        Command template whose stdout is the formatted file.
    lint_command : str
        Optional command template whose output lines become diagnostics.
    timeout : int
        Per-command timeout in seconds.
    """

    def __init__(self, formatter_command: str, lint_command: str = "", timeout: int = NORMALIZE_TIMEOUT_SECONDS) -> None:
        self.formatter_command = formatter_command
        self.lint_command = lint_command
        self.timeout = timeout

    async def normalize(self, code: str, file_path: str) -> NormalizeResult:
        diagnostics: List[str] = []
        formatted = code

        if self.formatter_command:
            output, error = await asyncio.to_thread(self._run, self.formatter_command, code, file_path)
            if error:
                logger.warning("Formatter failed for %s: %s", file_path, error)
                diagnostics.append(f"formatter: {error}")
            elif output.strip():
                formatted = output

        if self.lint_command:
            output, error = await asyncio.to_thread(self._run, self.lint_command, formatted, file_path)
            diagnostics.extend(line for line in (output or "").splitlines() if line.strip())
            if error:
                diagnostics.append(f"linter: {error}")

        return NormalizeResult(
            formatted_content=formatted,
            lint_diagnostics=diagnostics,
            was_changed=formatted != code,
        )

    def _run(self, template: str, stdin: str, file_path: str) -> tuple[str, Optional[str]]:
        """Run one command. Returns (stdout, error message or None)."""
        args = [part.replace("{file_path}", file_path) for part in shlex.split(template)]
        try:
            proc = subprocess.run(
                args,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return "", f"command not found: {args[0]}"
        except subprocess.TimeoutExpired:
            return "", f"timed out after {self.timeout}s"

        if proc.returncode != 0 and not proc.stdout:
            return "", (proc.stderr or f"exit code {proc.returncode}").strip()[:500]
        return proc.stdout, None


def build_normalizer() -> Normalizer:
    """Pick the normalize adapter from configuration."""
    if FORMATTER_COMMAND or LINT_COMMAND:
        logger.info("Using command normalizer (formatter=%r, lint=%r)", FORMATTER_COMMAND, LINT_COMMAND)
        return CommandNormalizer(FORMATTER_COMMAND, LINT_COMMAND)
    return PassthroughNormalizer()
