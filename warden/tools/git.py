"""Read-only git access for the audit pipeline.

Commands run inside the repository under audit with a strict allowlist;
the auditor only ever inspects, never mutates. The public helpers never
raise: failures come back as sentinel values and are logged.
"""

from __future__ import annotations

import os
import platform
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from warden.core.config import get_settings
from warden.core.logging import get_logger

logger = get_logger("tools.git")

ALLOWED_SUBCOMMANDS = {
    "config",
    "diff",
    "log",
    "rev-parse",
    "show",
    "status",
}

BLOCKED_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bgit\s+config\s+.*--(add|unset|replace-all|global|system)\b"),
    re.compile(r"--output\b"),
    re.compile(r"--ext-diff\b"),
]

BLOCKED_SHELL_TOKENS = {"&&", "||", "|", ";", "`", ">", "<"}

CODE_CHANGES_FAILED = "Failed to retrieve code changes for security analysis."


@dataclass
class GitResult:
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _split_command(command: str) -> list[str]:
    """Split a git command string into argv."""
    posix = not platform.system().lower().startswith("win")
    return shlex.split(command, posix=posix)


def _validate_git_command(command: str) -> str | None:
    """Return error message if blocked, else None."""
    for pattern in BLOCKED_PATTERNS:
        if pattern.search(command):
            return f"BLOCKED: forbidden git option - {pattern.pattern}"

    try:
        parts = _split_command(command.strip())
    except ValueError as exc:
        return f"ERROR: invalid git command syntax: {exc}"

    if not parts or parts[0] != "git":
        return "ERROR: command must start with 'git'"
    if len(parts) < 2:
        return "ERROR: incomplete git command"
    if any(token in BLOCKED_SHELL_TOKENS for token in parts[1:]):
        return "BLOCKED: shell control operators are not allowed in git commands"

    sub = parts[1]
    if sub not in ALLOWED_SUBCOMMANDS:
        allowed = ", ".join(sorted(ALLOWED_SUBCOMMANDS))
        return f"BLOCKED: git subcommand '{sub}' is not allowed. Permitted: {allowed}"

    # `git config` is read-only here: `git config <key>` or `git config --get <key>`
    if sub == "config" and not (len(parts) == 3 or (len(parts) == 4 and parts[2] == "--get")):
        return "BLOCKED: only 'git config <key>' lookups are allowed"

    return None


def _resolve_root(repo_root: str = "") -> Path:
    settings = get_settings()
    return Path(repo_root or settings.target_repo_path or ".").resolve()


def run_git(
    command: str,
    repo_root: str = "",
    timeout: int | None = None,
    truncate: bool = True,
) -> GitResult:
    """Execute a validated read-only git command and return exit code + output.

    With ``truncate`` the middle of long output is replaced by a marker; callers
    that parse the output line by line pass ``truncate=False`` and trim it
    themselves.
    """
    settings = get_settings()
    error = _validate_git_command(command)
    if error:
        logger.warning("git        | %s | %s", command, error)
        return GitResult(returncode=-1, output=error)

    root = _resolve_root(repo_root)
    if not root.is_dir():
        return GitResult(returncode=-1, output=f"ERROR: repo root does not exist: {root}")

    logger.info("git        | %s (cwd=%s)", command, root)
    try:
        result = subprocess.run(
            _split_command(command),
            shell=False,
            cwd=str(root),
            capture_output=True,
            text=True,
            timeout=timeout or settings.git_timeout_seconds,
            env={**dict(os.environ), "GIT_PAGER": "cat", "GIT_TERMINAL_PROMPT": "0"},
            encoding="utf-8",
            errors="replace",
        )
    except subprocess.TimeoutExpired:
        return GitResult(returncode=-1, output=f"TIMEOUT: git command took > {timeout or settings.git_timeout_seconds}s")
    except OSError as exc:
        return GitResult(returncode=-1, output=f"ERROR: {exc}")

    output = (result.stdout or "").strip()
    if result.returncode != 0 and result.stderr:
        output += ("\n" if output else "") + result.stderr.strip()

    limit = settings.max_output_chars
    if truncate and len(output) > limit:
        half = limit // 2
        output = output[:half] + "\n...[truncated]...\n" + output[-half:]

    logger.info("git        | exit=%d | output_len=%d", result.returncode, len(output))
    return GitResult(returncode=result.returncode, output=output)


def _keep_whole_lines(output: str, limit: int) -> str:
    """Drop trailing lines until ``output`` fits in ``limit`` characters (keeps at least one)."""
    if len(output) <= limit:
        return output
    kept: list[str] = []
    size = 0
    lines = output.splitlines()
    for line in lines:
        size += len(line) + (1 if kept else 0)
        if size > limit and kept:
            break
        kept.append(line)
    logger.warning("git        | file list truncated to %d of %d entries", len(kept), len(lines))
    return "\n".join(kept)


def get_base_branch_name(repo_root: str = "") -> str:
    """Base branch to diff against: ``init.defaultBranch``, else the configured default."""
    default = get_settings().default_base_branch
    result = run_git("git config init.defaultBranch", repo_root)
    if not result.ok or not result.output.strip():
        logger.error("Failed to get base branch name (%s) — falling back to '%s'", result.output or "empty", default)
        return default
    return result.output.strip()


def get_changed_files(base_branch: str, repo_root: str = "") -> str:
    """Newline-separated paths changed relative to ``base_branch``; "" on failure."""
    result = run_git(f"git diff {shlex.quote(base_branch)} --name-only", repo_root, truncate=False)
    if not result.ok:
        logger.error("Failed to get changed files: %s", result.output)
        return ""
    return _keep_whole_lines(result.output.strip(), get_settings().max_output_chars)


def get_code_changes(base_branch: str, repo_root: str = "") -> str:
    """Unified diff against ``base_branch``, or CODE_CHANGES_FAILED."""
    result = run_git(
        f"git diff {shlex.quote(base_branch)} --unified=3",
        repo_root,
        timeout=get_settings().git_diff_timeout_seconds,
    )
    if not result.ok:
        logger.error("Failed to get code changes: %s", result.output)
        return CODE_CHANGES_FAILED
    return result.output.strip()
