"""Git snapshot helpers backing VCS-paired checkpoints."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_IDENTITY_NAME = "repair-orchestrator"
_IDENTITY_EMAIL = "repair-orchestrator@example.invalid"


class GitSnapshotError(RuntimeError):
    """Base error for git snapshot failures."""


class GitCommandError(GitSnapshotError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class GitResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class GitSnapshotter:
    """Stage-and-commit snapshots of a working tree, and hard resets back to them.

    Paths listed in ``exclude_paths`` (typically the checkpoint backup directory) are never
    staged. Every call is blocking; async callers go through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        repo_path: str | Path,
        *,
        exclude_paths: Sequence[str | Path] = (),
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.repo_path = Path(repo_path).resolve(strict=False)
        self._exclude = tuple(self._relative_exclude(path) for path in exclude_paths)
        self._env_overrides = dict(env_overrides or {})

    def is_repository(self) -> bool:
        result = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def head(self) -> str | None:
        result = self._run_git(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def commit_all(self, message: str) -> str | None:
        """Commit every working-tree change; returns the new (or unchanged) HEAD."""

        if not message.strip():
            raise ValueError("message must not be empty")
        pathspec = ["."]
        pathspec.extend(f":(exclude){path}" for path in self._exclude if path)
        self._run_git(["add", "--all", "--", *pathspec])

        staged = self._run_git(["diff", "--cached", "--quiet"], check=False)
        if staged.returncode == 0:
            return self.head()

        self._ensure_local_identity()
        self._run_git(["commit", "--quiet", "--no-verify", "-m", message])
        return self.head()

    def reset_hard(self, commit: str) -> None:
        if not commit.strip() or commit.startswith("-"):
            raise GitSnapshotError(f"invalid commit reference: {commit!r}")
        self._run_git(["reset", "--hard", "--quiet", commit])

    def _ensure_local_identity(self) -> None:
        if self._run_git(["config", "--get", "user.name"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.name", _IDENTITY_NAME])
        if self._run_git(["config", "--get", "user.email"], check=False).returncode != 0:
            self._run_git(["config", "--local", "user.email", _IDENTITY_EMAIL])

    def _relative_exclude(self, path: str | Path) -> str:
        candidate = Path(path)
        if not candidate.is_absolute():
            return candidate.as_posix()
        try:
            return candidate.resolve(strict=False).relative_to(self.repo_path).as_posix()
        except ValueError:
            return ""

    def _run_git(self, args: Sequence[str], *, check: bool = True) -> GitResult:
        command = ("git", *args)
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)

        try:
            completed = subprocess.run(
                command,
                cwd=self.repo_path,
                env=env,
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise GitSnapshotError(f"unable to run git: {exc}") from exc

        result = GitResult(
            command=command,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if check and result.returncode != 0:
            raise GitCommandError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


__all__ = ["GitCommandError", "GitResult", "GitSnapshotError", "GitSnapshotter"]
