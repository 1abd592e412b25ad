from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .manifest import SkillDescriptor, find_manifest, parse_manifest
from .sources import ROOT_SKILLS_PATH, is_root_skills_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SkillRecord:
    id: str
    name: str
    description: str
    owner: str
    repo: str
    path: str  # "." for a root-level skill, otherwise the skill's folder name
    local_path: str  # relative to the library root, POSIX separators
    skills_path: str = ROOT_SKILLS_PATH
    license: str | None = None

    @property
    def repo_key(self) -> str:
        return f"{self.owner}/{self.repo}"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "repo": self.repo,
            "path": self.path,
            "localPath": self.local_path,
            "skillsPath": self.skills_path,
        }
        if self.license:
            out["license"] = self.license
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SkillRecord":
        license_value = raw.get("license")
        return cls(
            id=str(raw["id"]),
            name=str(raw["name"]),
            description=str(raw.get("description", "")),
            owner=str(raw["owner"]),
            repo=str(raw["repo"]),
            path=str(raw.get("path", ROOT_SKILLS_PATH)),
            local_path=str(raw.get("localPath", "")),
            skills_path=str(raw.get("skillsPath", ROOT_SKILLS_PATH)),
            license=license_value if isinstance(license_value, str) else None,
        )


def skill_id(owner: str, repo: str, name: str) -> str:
    return f"{owner}/{repo}/{name}"


def _relative_to_library(path: Path, library_root: Path) -> str:
    return Path(os.path.relpath(path, library_root)).as_posix()


def _make_record(
    descriptor: SkillDescriptor,
    *,
    owner: str,
    repo: str,
    path: str,
    skill_dir: Path,
    skills_path: str,
    library_root: Path,
) -> SkillRecord:
    return SkillRecord(
        id=skill_id(owner, repo, descriptor.name),
        name=descriptor.name,
        description=descriptor.description,
        owner=owner,
        repo=repo,
        path=path,
        local_path=_relative_to_library(skill_dir, library_root),
        skills_path=skills_path,
        license=descriptor.license,
    )


def _discover_root(owner: str, repo: str, repo_path: Path, library_root: Path) -> list[SkillRecord]:
    try:
        manifest = find_manifest(repo_path)
        descriptor = parse_manifest(manifest) if manifest is not None else None
    except OSError as e:
        logger.warning("Could not read root manifest of %s/%s: %s", owner, repo, e)
        return []
    if descriptor is None:
        return []
    record = _make_record(
        descriptor,
        owner=owner,
        repo=repo,
        path=ROOT_SKILLS_PATH,
        skill_dir=repo_path,
        skills_path=ROOT_SKILLS_PATH,
        library_root=library_root,
    )
    return [record]


def _discover_subdirectory(
    owner: str,
    repo: str,
    repo_path: Path,
    skills_path: str,
    library_root: Path,
) -> list[SkillRecord]:
    skills_dir = repo_path / skills_path.strip("/")
    try:
        if not skills_dir.is_dir():
            return []
        children = sorted(skills_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.warning("Could not read %s for %s/%s: %s", skills_dir, owner, repo, e)
        return []

    records: list[SkillRecord] = []
    for child in children:
        try:
            if not child.is_dir():
                continue
            manifest = find_manifest(child)
            if manifest is None:
                logger.debug("No manifest in %s", child)
                continue
            descriptor = parse_manifest(manifest)
        except OSError as e:
            logger.warning("Skipping unreadable skill folder %s in %s/%s: %s", child.name, owner, repo, e)
            continue
        if descriptor is None:
            continue
        records.append(
            _make_record(
                descriptor,
                owner=owner,
                repo=repo,
                path=child.name,
                skill_dir=child,
                skills_path=skills_path,
                library_root=library_root,
            )
        )
    return records


def locate(
    owner: str,
    repo: str,
    repo_path: Path,
    skills_path: str,
    *,
    library_root: Path,
) -> list[SkillRecord]:
    """
    Discover the skills of one repository working copy.

    Decision procedure, first match wins:
      1. root convention ("."): a single manifest at the repository root;
      2. otherwise every immediate child folder of ``skills_path`` that holds a
         parseable manifest;
      3. when step 2 yields nothing, fall back to the root manifest.
    """
    if is_root_skills_path(skills_path):
        return _discover_root(owner, repo, repo_path, library_root)

    records = _discover_subdirectory(owner, repo, repo_path, skills_path, library_root)
    if records:
        return records

    return _discover_root(owner, repo, repo_path, library_root)
