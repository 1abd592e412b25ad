from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from .client import SkillStudioError
from .config import DEFAULT_GIT_TIMEOUT_S
from .sources import RepositorySource

logger = logging.getLogger(__name__)

BranchResolver = Callable[[RepositorySource], "str | None"]


@dataclass(frozen=True)
class SyncResult:
    key: str
    ok: bool
    action: str  # "clone" or "pull"
    message: str = ""


class GitRunner:
    """Thin wrapper around the ``git`` executable."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def run(self, args: Sequence[str], *, cwd: Path | None = None, timeout_s: float | None = None) -> str:
        cmd = [self.executable, *args]
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                capture_output=True,
                text=True,
                timeout=timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise SkillStudioError(f"git {args[0]} timed out after {timeout_s}s") from e
        except OSError as e:
            raise SkillStudioError(f"Could not run {self.executable}: {e}") from e

        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout or "").strip()
            raise SkillStudioError(f"git {args[0]} exited with {proc.returncode}: {detail}")
        return proc.stdout


class RepositorySynchronizer:
    def __init__(
        self,
        *,
        repos_root: Path,
        git: GitRunner | None = None,
        branch_resolver: BranchResolver | None = None,
        timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
    ) -> None:
        self.repos_root = repos_root
        self.git = git or GitRunner()
        self.branch_resolver = branch_resolver
        self.timeout_s = timeout_s

    def repo_path(self, source: RepositorySource) -> Path:
        return self.repos_root / source.owner / source.repo

    def has_working_copy(self, source: RepositorySource) -> bool:
        return (self.repo_path(source) / ".git").exists()

    def _branch_for(self, source: RepositorySource) -> str | None:
        if source.branch:
            return source.branch
        if self.branch_resolver is None:
            return None
        try:
            return self.branch_resolver(source)
        except SkillStudioError as e:
            # Cloning without --branch still gets the remote's default branch.
            logger.debug("Branch discovery failed for %s: %s", source.key, e)
            return None

    def _clone(self, source: RepositorySource, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone", "--depth", "1", "--single-branch"]
        branch = self._branch_for(source)
        if branch:
            args += ["--branch", branch]
        args += [source.clone_url, str(target)]
        try:
            self.git.run(args, timeout_s=self.timeout_s)
        except SkillStudioError:
            if target.exists():
                shutil.rmtree(target, ignore_errors=True)
            raise

    def _pull(self, target: Path) -> None:
        self.git.run(["pull", "--ff-only"], cwd=target, timeout_s=self.timeout_s)

    def sync(self, source: RepositorySource) -> SyncResult:
        target = self.repo_path(source)
        if self.has_working_copy(source):
            action = "pull"
            logger.info("Updating %s...", source.key)
        else:
            action = "clone"
            logger.info("Cloning %s...", source.key)
            if target.exists():
                # Leftover of an interrupted clone.
                logger.warning("Removing %s: not a git working copy", target)
                shutil.rmtree(target, ignore_errors=True)

        try:
            if action == "pull":
                self._pull(target)
            else:
                self._clone(source, target)
        except (SkillStudioError, OSError) as e:
            logger.warning("Could not %s %s: %s", action, source.key, e)
            return SyncResult(key=source.key, ok=False, action=action, message=str(e))

        return SyncResult(key=source.key, ok=True, action=action)
