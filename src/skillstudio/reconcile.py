from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Container, Mapping

from .catalog import CatalogIndex
from .locator import SkillRecord
from .sources import RepositorySource
from .state import Favorites


@dataclass(frozen=True)
class ViewSkill:
    record: SkillRecord
    is_installed: bool
    is_favorite: bool
    is_fetched: bool

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        out.update(
            {
                "isInstalled": self.is_installed,
                "isFavorite": self.is_favorite,
                "isFetched": self.is_fetched,
            }
        )
        return out


@dataclass(frozen=True)
class ViewRepository:
    source: RepositorySource
    is_fetched: bool
    is_favorite: bool
    skill_count: int
    last_fetched: str | None = None

    @property
    def key(self) -> str:
        return self.source.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.source.owner,
            "repo": self.source.repo,
            "skillsPath": self.source.resolved_skills_path,
            "isFetched": self.is_fetched,
            "isFavorite": self.is_favorite,
            "isCustom": self.source.is_custom,
            "highlight": self.source.highlight,
            "skillCount": self.skill_count,
            "lastFetched": self.last_fetched,
        }


def view(
    index: CatalogIndex,
    favorites: Favorites,
    installed: Container[str],
    *,
    is_fetched: Callable[[RepositorySource], bool],
    last_fetched: Mapping[str, str] | None = None,
) -> tuple[list[ViewSkill], list[ViewRepository]]:
    """
    Project the catalog onto the current local state.

    Installed state is matched by skill *name*, so same-named skills from two
    repositories are both reported as installed once either one is.
    """
    favorite_skills = set(favorites.skills)
    favorite_repos = set(favorites.repos)
    fetched_by_key = {source.key: is_fetched(source) for source in index.sources}

    skills: list[ViewSkill] = []
    counts: dict[str, int] = {}
    for record in index.records:
        counts[record.repo_key] = counts.get(record.repo_key, 0) + 1
        skills.append(
            ViewSkill(
                record=record,
                is_installed=record.name in installed,
                is_favorite=record.id in favorite_skills,
                is_fetched=fetched_by_key.get(record.repo_key, False),
            )
        )

    repos = [
        ViewRepository(
            source=source,
            is_fetched=fetched_by_key[source.key],
            is_favorite=source.key in favorite_repos,
            skill_count=counts.get(source.key, 0),
            last_fetched=(last_fetched or {}).get(source.key),
        )
        for source in index.sources
    ]
    return skills, repos
