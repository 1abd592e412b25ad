from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .client import SkillStudioError
from .sources import RepositorySource

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2) + "\n")
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _read_json_dict(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return {}
    return raw if isinstance(raw, dict) else {}


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        if isinstance(item, str) and item not in out:
            out.append(item)
    return out


@dataclass(frozen=True)
class Favorites:
    skills: tuple[str, ...] = ()  # skill IDs
    repos: tuple[str, ...] = ()  # "owner/repo" keys

    def to_dict(self) -> dict[str, Any]:
        return {"skills": list(self.skills), "repos": list(self.repos)}


def _toggle(items: tuple[str, ...], value: str) -> tuple[str, ...]:
    if value in items:
        return tuple(x for x in items if x != value)
    return items + (value,)


class FavoritesStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> Favorites:
        raw = _read_json_dict(self.path)
        return Favorites(skills=tuple(_string_list(raw.get("skills"))), repos=tuple(_string_list(raw.get("repos"))))

    def _save(self, favorites: Favorites) -> None:
        try:
            write_json_atomic(self.path, favorites.to_dict())
        except OSError as e:
            raise SkillStudioError(f"Failed to save favorites to {self.path}: {e}") from e

    def toggle_skill(self, skill_id: str) -> Favorites:
        if not skill_id.strip():
            raise SkillStudioError("Skill id must not be empty.")
        with self._lock:
            current = self.load()
            updated = Favorites(skills=_toggle(current.skills, skill_id), repos=current.repos)
            self._save(updated)
        return updated

    def toggle_repo(self, repo_key: str) -> Favorites:
        if not repo_key.strip():
            raise SkillStudioError("Repository key must not be empty.")
        with self._lock:
            current = self.load()
            updated = Favorites(skills=current.skills, repos=_toggle(current.repos, repo_key))
            self._save(updated)
        return updated


class CustomRepoStore:
    """User-added repositories, kept in insertion order."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def list(self) -> list[RepositorySource]:
        raw = _read_json_dict(self.path)
        entries = raw.get("repos")
        if not isinstance(entries, list):
            return []
        sources: list[RepositorySource] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            try:
                source = RepositorySource.from_dict({**entry, "isCustom": True})
            except SkillStudioError as e:
                logger.warning("Skipping custom repository entry %r: %s", entry, e)
                continue
            sources.append(source)
        return sources

    def _save(self, sources: list[RepositorySource]) -> None:
        payload = {"repos": []}
        for s in sources:
            item: dict[str, Any] = {"owner": s.owner, "repo": s.repo}
            if s.skills_path:
                item["skillsPath"] = s.skills_path
            if s.branch:
                item["branch"] = s.branch
            payload["repos"].append(item)
        try:
            write_json_atomic(self.path, payload)
        except OSError as e:
            raise SkillStudioError(f"Failed to save custom repositories to {self.path}: {e}") from e

    def add(self, owner: str, repo: str) -> RepositorySource:
        with self._lock:
            sources = self.list()
            for s in sources:
                if s.owner == owner and s.repo == repo:
                    return s
            source = RepositorySource(owner=owner, repo=repo, is_custom=True)
            sources.append(source)
            self._save(sources)
        return source

    def remove(self, owner: str, repo: str) -> bool:
        with self._lock:
            sources = self.list()
            kept = [s for s in sources if not (s.owner == owner and s.repo == repo)]
            if len(kept) == len(sources):
                return False
            self._save(kept)
        return True

    def set_skills_path(self, owner: str, repo: str, skills_path: str) -> None:
        with self._lock:
            sources = self.list()
            updated = [
                RepositorySource(owner=s.owner, repo=s.repo, branch=s.branch, skills_path=skills_path, is_custom=True)
                if s.owner == owner and s.repo == repo
                else s
                for s in sources
            ]
            self._save(updated)


class FetchedReposStore:
    """Last successful fetch time per "owner/repo" key."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> dict[str, str]:
        raw = _read_json_dict(self.path)
        repos = raw.get("repos")
        if not isinstance(repos, dict):
            return {}
        return {k: v for k, v in repos.items() if isinstance(k, str) and isinstance(v, str)}

    def mark_fetched(self, repo_key: str, *, at: str | None = None) -> None:
        with self._lock:
            repos = self.load()
            repos[repo_key] = at or _utc_now()
            try:
                write_json_atomic(self.path, {"repos": {k: repos[k] for k in sorted(repos)}})
            except OSError as e:
                raise SkillStudioError(f"Failed to save fetch state to {self.path}: {e}") from e


@dataclass(frozen=True)
class InstalledSkill:
    name: str
    path: Path
    is_symlink: bool = False


@dataclass(frozen=True)
class InstalledSet:
    skills: dict[str, InstalledSkill] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.skills

    def names(self) -> list[str]:
        return sorted(self.skills)


def load_installed_set(installed_dir: Path) -> InstalledSet:
    if not installed_dir.is_dir():
        return InstalledSet()
    try:
        entries = list(installed_dir.iterdir())
    except OSError as e:
        logger.warning("Could not read installed skills in %s: %s", installed_dir, e)
        return InstalledSet()
    skills = {
        entry.name: InstalledSkill(name=entry.name, path=entry, is_symlink=entry.is_symlink())
        for entry in entries
        if not entry.name.startswith(".")
    }
    return InstalledSet(skills=skills)
