from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Sequence

from .client import SkillStudioError
from .config import DEFAULT_GIT_TIMEOUT_S, INSTALL_METHODS
from .sources import is_root_skills_path

logger = logging.getLogger(__name__)

# Directory/file names never copied into an installed skill.
DEFAULT_EXCLUDE_NAMES = (".git", ".hg", ".svn", ".DS_Store", "__pycache__", "node_modules")


def _validate_skill_name(skill_name: str) -> str:
    name = skill_name.strip()
    if not name or name in {".", ".."} or "/" in name or "\\" in name or name.startswith("."):
        raise SkillStudioError(f"Invalid skill name {skill_name!r}. Expected a single folder name.")
    return name


class CommandRunner:
    def run(self, cmd: Sequence[str], *, timeout_s: float | None = None) -> str:
        try:
            proc = subprocess.run(list(cmd), capture_output=True, text=True, timeout=timeout_s, check=False)
        except subprocess.TimeoutExpired as e:
            raise SkillStudioError(f"{cmd[0]} timed out after {timeout_s}s") from e
        except OSError as e:
            raise SkillStudioError(f"Failed to run {cmd[0]}: {e}") from e
        if proc.returncode != 0:
            raise SkillStudioError((proc.stderr or proc.stdout or f"{cmd[0]} exited with {proc.returncode}").strip())
        return proc.stdout


class SkillInstaller:
    def __init__(
        self,
        *,
        installed_dir: Path,
        repos_root: Path,
        runner: CommandRunner | None = None,
        timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
    ) -> None:
        self.installed_dir = installed_dir
        self.repos_root = repos_root
        self.runner = runner or CommandRunner()
        self.timeout_s = timeout_s

    def source_dir(self, owner: str, repo: str, skill_path: str, skills_path: str) -> Path:
        repo_path = self.repos_root / owner / repo
        if is_root_skills_path(skill_path):
            return repo_path
        if is_root_skills_path(skills_path):
            return repo_path / skill_path
        return repo_path / skills_path.strip("/") / skill_path

    def install(
        self,
        *,
        owner: str,
        repo: str,
        skill_name: str,
        skill_path: str,
        skills_path: str,
        method: str = "copy",
    ) -> str:
        if method not in INSTALL_METHODS:
            raise SkillStudioError(f"Unknown install method {method!r}. Expected one of: {', '.join(INSTALL_METHODS)}.")
        name = _validate_skill_name(skill_name)
        if method == "npx":
            return self._install_npx(owner=owner, repo=repo, skill_name=name)
        return self._install_copy(source=self.source_dir(owner, repo, skill_path, skills_path), skill_name=name)

    def _install_npx(self, *, owner: str, repo: str, skill_name: str) -> str:
        output = self.runner.run(
            ["npx", "skills", "add", f"{owner}/{repo}", f"--skill={skill_name}"],
            timeout_s=self.timeout_s,
        )
        logger.info("Installed %s from %s/%s via npx", skill_name, owner, repo)
        return output.strip() or f"Skill '{skill_name}' installed via npx"

    def _install_copy(self, *, source: Path, skill_name: str) -> str:
        if not source.is_dir():
            raise SkillStudioError(f"Source path does not exist: {source}")

        dest = self.installed_dir / skill_name
        try:
            self.installed_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix=".skillstudio-", dir=self.installed_dir) as td:
                staged = Path(td) / skill_name
                shutil.copytree(source, staged, ignore=shutil.ignore_patterns(*DEFAULT_EXCLUDE_NAMES))

                backup = dest.with_name("." + dest.name + ".skillstudio-backup")
                had_existing = dest.exists() or dest.is_symlink()
                if backup.exists():
                    shutil.rmtree(backup, ignore_errors=True)
                if had_existing:
                    dest.rename(backup)

                try:
                    shutil.move(str(staged), str(dest))
                except Exception:
                    if dest.exists():
                        shutil.rmtree(dest, ignore_errors=True)
                    if had_existing and (backup.exists() or backup.is_symlink()):
                        backup.rename(dest)
                    raise
                finally:
                    if backup.is_symlink():
                        backup.unlink()
                    elif backup.exists():
                        shutil.rmtree(backup, ignore_errors=True)
        except OSError as e:
            raise SkillStudioError(f"Failed to copy skill: {e}") from e

        logger.info("Installed %s into %s", skill_name, dest)
        return f"Skill '{skill_name}' installed via direct copy"

    def uninstall(self, skill_name: str) -> bool:
        name = _validate_skill_name(skill_name)
        target = self.installed_dir / name
        try:
            if target.is_symlink():
                target.unlink()
            elif target.is_dir():
                shutil.rmtree(target)
            elif target.exists():
                target.unlink()
            else:
                return False
        except OSError as e:
            raise SkillStudioError(f"Failed to remove {target}: {e}") from e
        logger.info("Uninstalled %s", name)
        return True
