from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .client import SkillStudioError
from .manifest import find_manifest

logger = logging.getLogger(__name__)

ROOT_SKILLS_PATH = "."
DEFAULT_SKILLS_PATH = "skills/"
SINGLE_SKILL_SUFFIX = "-skill"

# Repositories known to ship exactly one skill at their root.
SINGLE_SKILL_REPOS = frozenset(
    {
        "avdlee/swiftui-agent-skill",
        "avdlee/swift-concurrency-agent-skill",
        "avdlee/swift-testing-agent-skill",
        "nextlevelbuilder/ui-ux-pro-max-skill",
        "199-biotechnologies/claude-deep-research-skill",
        "superdesigndev/superdesign-skill",
        "yusukebe/hono-skill",
        "heredotnow/skill",
        "leonxlnx/taste-skill",
        "pleaseprompto/notebooklm-skill",
    }
)

# Used when no catalog file is configured.
DEFAULT_CATALOG_REPOS = (
    "anthropics/skills",
    "obra/superpowers",
    "avdlee/swiftui-agent-skill",
    "yusukebe/hono-skill",
)

# Checked by detect_skills_path, in order of preference on ties.
CANDIDATE_SKILLS_PATHS = ("skills", "src/skills", "lib/skills")

_OWNER_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_REPO_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
_HTTPS_RE = re.compile(r"^https?://(?:www\.)?github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)
_SSH_RE = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$", re.IGNORECASE)


def is_root_skills_path(skills_path: str | None) -> bool:
    if skills_path is None:
        return False
    return skills_path.strip() in (".", "./", "")


def resolve_skills_path(owner: str, repo: str, override: str | None = None) -> str:
    if override is not None and override.strip():
        return ROOT_SKILLS_PATH if is_root_skills_path(override) else override.strip()
    if f"{owner}/{repo}".lower() in SINGLE_SKILL_REPOS or repo.lower().endswith(SINGLE_SKILL_SUFFIX):
        return ROOT_SKILLS_PATH
    return DEFAULT_SKILLS_PATH


@dataclass(frozen=True)
class RepositorySource:
    owner: str
    repo: str
    branch: str | None = None
    skills_path: str | None = None  # explicit override; "." means the skill lives at the root
    highlight: bool = False
    is_custom: bool = False

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"

    @property
    def resolved_skills_path(self) -> str:
        return resolve_skills_path(self.owner, self.repo, self.skills_path)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "owner": self.owner,
            "repo": self.repo,
            "resolvedSkillsPath": self.resolved_skills_path,
        }
        if self.skills_path:
            out["skillsPath"] = self.skills_path
        if self.branch:
            out["branch"] = self.branch
        if self.highlight:
            out["highlight"] = True
        if self.is_custom:
            out["isCustom"] = True
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RepositorySource":
        owner, repo = _validate(str(raw.get("owner", "")), str(raw.get("repo", "")), context=repr(raw))
        branch = raw.get("branch")
        skills_path = raw.get("skillsPath")
        return cls(
            owner=owner,
            repo=repo,
            branch=branch if isinstance(branch, str) and branch.strip() else None,
            skills_path=skills_path if isinstance(skills_path, str) and skills_path.strip() else None,
            highlight=bool(raw.get("highlight")),
            is_custom=bool(raw.get("isCustom")),
        )


def _validate(owner: str, repo: str, *, context: str) -> tuple[str, str]:
    owner = owner.strip()
    repo = repo.strip()
    if not _OWNER_RE.match(owner):
        raise SkillStudioError(f"Invalid repository owner in {context}: {owner!r}.")
    if not _REPO_RE.match(repo) or repo in (".", ".."):
        raise SkillStudioError(f"Invalid repository name in {context}: {repo!r}.")
    return owner, repo


def parse_repo_ref(value: str) -> tuple[str, str]:
    """
    Parse a user-supplied repository reference into (owner, repo).

    Accepts ``owner/repo``, ``https://github.com/owner/repo[.git]`` and
    ``git@github.com:owner/repo.git``.
    """
    raw = (value or "").strip()
    if not raw:
        raise SkillStudioError("Invalid repository ''. Expected <owner>/<repo>.")

    m = _HTTPS_RE.match(raw) or _SSH_RE.match(raw)
    if m:
        return _validate(m.group(1), m.group(2), context=repr(value))
    if "://" in raw or raw.startswith("git@"):
        raise SkillStudioError(f"Unsupported repository URL {value!r}. Only github.com repositories are supported.")

    parts = raw.split("/")
    if len(parts) != 2:
        raise SkillStudioError(f"Invalid repository {value!r}. Expected <owner>/<repo>.")
    return _validate(parts[0], parts[1], context=repr(value))


def _source_from_catalog_entry(entry: Any) -> RepositorySource | None:
    if isinstance(entry, str):
        owner, repo = parse_repo_ref(entry)
        return RepositorySource(owner=owner, repo=repo)
    if not isinstance(entry, dict):
        return None

    url = entry.get("url")
    if isinstance(url, str):
        owner, repo = parse_repo_ref(url)
    elif isinstance(entry.get("owner"), str) and isinstance(entry.get("repo"), str):
        owner, repo = _validate(entry["owner"], entry["repo"], context=repr(entry))
    else:
        return None

    branch = entry.get("branch")
    skills_path = entry.get("skillsPath")
    return RepositorySource(
        owner=owner,
        repo=repo,
        branch=branch.strip() if isinstance(branch, str) and branch.strip() else None,
        skills_path=skills_path if isinstance(skills_path, str) and skills_path.strip() else None,
        highlight=bool(entry.get("highlight")),
    )


def load_catalog_sources(path: Path | None) -> list[RepositorySource]:
    if path is None or not path.exists():
        return [RepositorySource(owner=o, repo=r) for o, r in (parse_repo_ref(k) for k in DEFAULT_CATALOG_REPOS)]

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SkillStudioError(f"Failed to read catalog {path}: {e}") from e

    entries = raw.get("repos") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise SkillStudioError(f"Catalog {path} has no 'repos' list.")

    sources: list[RepositorySource] = []
    seen: set[str] = set()
    for entry in entries:
        try:
            source = _source_from_catalog_entry(entry)
        except SkillStudioError as e:
            logger.warning("Skipping catalog entry %r: %s", entry, e)
            continue
        if source is None:
            logger.warning("Skipping catalog entry %r: unrecognized format", entry)
            continue
        if source.key in seen:
            continue
        seen.add(source.key)
        sources.append(source)
    return sources


def merge_sources(
    catalog: Iterable[RepositorySource],
    custom: Iterable[RepositorySource],
) -> list[RepositorySource]:
    merged: list[RepositorySource] = []
    seen: set[str] = set()
    for source in catalog:
        if source.key not in seen:
            seen.add(source.key)
            merged.append(source)
    for source in custom:
        if source.key not in seen:
            seen.add(source.key)
            merged.append(source)
    return merged


def _count_skill_dirs(directory: Path) -> int:
    try:
        children = list(directory.iterdir())
    except OSError:
        return 0
    return sum(1 for child in children if child.is_dir() and find_manifest(child) is not None)


def detect_skills_path(repo_path: Path) -> str | None:
    """
    Guess where a freshly fetched repository keeps its skills.

    Returns the candidate folder with the most skill directories, "." for a single
    root-level manifest, or None when nothing looks like a skill.
    """
    best_path: str | None = None
    best_count = 0
    for candidate in CANDIDATE_SKILLS_PATHS:
        check = repo_path / candidate
        if not check.is_dir():
            continue
        count = _count_skill_dirs(check)
        if count > best_count:
            best_count = count
            best_path = candidate

    if best_path is not None:
        return best_path + "/"
    if find_manifest(repo_path) is not None:
        return ROOT_SKILLS_PATH
    return None
