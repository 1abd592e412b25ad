"""
Operations served to the presentation layer.

Every read recomputes the reconciled view from the persisted index plus the
current favorites and installed skills; nothing is cached between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from .catalog import BuildReport, CatalogBuilder, CatalogIndex, INDEX_FORMAT_VERSION, load_index
from .client import GitHubClient, SkillStudioError
from .config import (
    CUSTOM_REPOS_FILENAME,
    FAVORITES_FILENAME,
    FETCHED_REPOS_FILENAME,
    INSTALL_METHODS,
    Config,
    save_config,
    state_dir,
)
from .install import SkillInstaller
from .manifest import find_manifest
from .reconcile import ViewRepository, ViewSkill, view
from .sources import RepositorySource, detect_skills_path, load_catalog_sources, merge_sources, parse_repo_ref
from .state import CustomRepoStore, Favorites, FavoritesStore, FetchedReposStore, InstalledSet, load_installed_set
from .sync import GitRunner, RepositorySynchronizer

logger = logging.getLogger(__name__)

README_NAMES = ("README.md", "readme.md", "Readme.md", "README.MD")


@dataclass(frozen=True)
class FetchResult:
    key: str
    ok: bool
    message: str
    skill_count: int = 0

    def to_dict(self) -> dict[str, object]:
        return {"repo": self.key, "ok": self.ok, "message": self.message, "skillCount": self.skill_count}


class SkillStudio:
    def __init__(
        self,
        cfg: Config,
        *,
        state_path: Path | None = None,
        config_file: Path | None = None,
        git: GitRunner | None = None,
        github: GitHubClient | None = None,
        installer: SkillInstaller | None = None,
    ) -> None:
        self.cfg = cfg
        self._config_file = config_file
        base = state_path or state_dir(config_file)
        self.favorites = FavoritesStore(base / FAVORITES_FILENAME)
        self.custom_repos = CustomRepoStore(base / CUSTOM_REPOS_FILENAME)
        self.fetched_repos = FetchedReposStore(base / FETCHED_REPOS_FILENAME)

        self.github = github or GitHubClient(base_url=cfg.github_api_url, token=cfg.github_token, timeout_s=cfg.timeout_s)
        self.synchronizer = RepositorySynchronizer(
            repos_root=cfg.repos_path,
            git=git,
            branch_resolver=lambda s: self.github.resolve_branch(s.owner, s.repo),
            timeout_s=cfg.git_timeout_s,
        )
        self.builder = CatalogBuilder(
            synchronizer=self.synchronizer,
            library_root=cfg.library_path,
            index_path=cfg.index_path,
            max_workers=cfg.max_workers,
        )
        self.installer = installer or SkillInstaller(
            installed_dir=cfg.installed_skills_path,
            repos_root=cfg.repos_path,
            timeout_s=cfg.git_timeout_s,
        )

    def close(self) -> None:
        self.github.close()

    def __enter__(self) -> "SkillStudio":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # sources

    def sources(self) -> list[RepositorySource]:
        """Configured sources: the static catalog followed by user-added repositories."""
        return merge_sources(load_catalog_sources(self.cfg.catalog_file), self.custom_repos.list())

    def _find_source(self, owner: str, repo: str) -> RepositorySource | None:
        for source in self.sources():
            if source.owner == owner and source.repo == repo:
                return source
        return None

    def get_custom_repos(self) -> list[RepositorySource]:
        return self.custom_repos.list()

    # catalog

    def load_index(self) -> CatalogIndex:
        index = load_index(self.cfg.index_path)
        if index is None:
            return CatalogIndex(version=INDEX_FORMAT_VERSION, built_at="", sources=tuple(self.sources()), records=())
        return index

    def _record_fetched(self, report: BuildReport) -> None:
        for outcome in report.outcomes:
            if outcome.sync is not None and outcome.sync.ok:
                self.fetched_repos.mark_fetched(outcome.source.key)

    def build_catalog(self, *, sync: bool = True) -> BuildReport:
        report = self.builder.run(self.sources(), sync=sync)
        self._record_fetched(report)
        return report

    def fetch_repo(self, owner: str, repo: str) -> FetchResult:
        owner, repo = parse_repo_ref(f"{owner}/{repo}")
        source = self._find_source(owner, repo)
        if source is None:
            raise SkillStudioError(f"Unknown repository {owner}/{repo}. Add it with add_custom_repo first.")

        report = self.builder.run(self.sources(), sync={source.key})
        self._record_fetched(report)
        outcome = next(o for o in report.outcomes if o.source.key == source.key)
        count = len(report.index.records_for(owner, repo))
        if outcome.sync is not None and not outcome.sync.ok:
            return FetchResult(key=source.key, ok=False, message=outcome.sync.message, skill_count=count)
        return FetchResult(key=source.key, ok=True, message=f"Fetched {source.key} ({count} skills)", skill_count=count)

    # reconciled reads

    def get_installed_skills(self) -> InstalledSet:
        return load_installed_set(self.cfg.installed_skills_path)

    def _view(self) -> tuple[list[ViewSkill], list[ViewRepository]]:
        return view(
            self.load_index(),
            self.favorites.load(),
            self.get_installed_skills(),
            is_fetched=self.synchronizer.has_working_copy,
            last_fetched=self.fetched_repos.load(),
        )

    def get_all_skills(self) -> list[ViewSkill]:
        return self._view()[0]

    def get_all_repos(self) -> list[ViewRepository]:
        return self._view()[1]

    def get_skill_content(self, skill_id: str) -> str | None:
        record = self.load_index().find(skill_id)
        if record is None:
            raise SkillStudioError(f"Unknown skill id: {skill_id}")
        manifest = find_manifest(self.cfg.library_path / record.local_path)
        if manifest is None:
            return None
        try:
            return manifest.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise SkillStudioError(f"Failed to read {manifest}: {e}") from e

    def get_repo_readme(self, owner: str, repo: str) -> str | None:
        owner, repo = parse_repo_ref(f"{owner}/{repo}")
        repo_path = self.cfg.repos_path / owner / repo
        if not repo_path.is_dir():
            return None
        for name in README_NAMES:
            readme = repo_path / name
            if readme.is_file():
                try:
                    return readme.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    raise SkillStudioError(f"Failed to read README: {e}") from e
        return None

    # install / uninstall

    def install_skill(
        self,
        owner: str,
        repo: str,
        skill_name: str,
        skill_path: str,
        skills_path: str,
        method: str | None = None,
    ) -> str:
        return self.installer.install(
            owner=owner,
            repo=repo,
            skill_name=skill_name,
            skill_path=skill_path,
            skills_path=skills_path,
            method=method or self.cfg.install_method,
        )

    def uninstall_skill(self, skill_name: str) -> bool:
        return self.installer.uninstall(skill_name)

    # favorites

    def get_favorites(self) -> Favorites:
        return self.favorites.load()

    def toggle_favorite_skill(self, skill_id: str) -> Favorites:
        return self.favorites.toggle_skill(skill_id)

    def toggle_favorite_repo(self, repo_key: str) -> Favorites:
        return self.favorites.toggle_repo(repo_key)

    # custom repositories

    def add_custom_repo(self, owner: str, repo: str) -> FetchResult:
        owner, repo = parse_repo_ref(f"{owner}/{repo}")
        self.custom_repos.add(owner, repo)
        source = self._find_source(owner, repo)
        if source is not None and source.is_custom and source.skills_path is None:
            synced = self.synchronizer.sync(source)
            detected = detect_skills_path(self.synchronizer.repo_path(source))
            if detected is not None:
                self.custom_repos.set_skills_path(owner, repo, detected)
            # Synced above, so only re-index here.
            report = self.builder.run(self.sources(), sync=False)
            count = len(report.index.records_for(owner, repo))
            if self.synchronizer.has_working_copy(source):
                self.fetched_repos.mark_fetched(source.key)
                return FetchResult(key=source.key, ok=True, message=f"Added custom repo {source.key} ({count} skills)", skill_count=count)
            return FetchResult(key=source.key, ok=False, message=f"Added custom repo {source.key} but could not fetch it: {synced.message}")
        return self.fetch_repo(owner, repo)

    def remove_custom_repo(self, owner: str, repo: str) -> bool:
        owner, repo = parse_repo_ref(f"{owner}/{repo}")
        removed = self.custom_repos.remove(owner, repo)
        if removed:
            self.builder.run(self.sources(), sync=False)
        return removed

    # settings

    def get_settings(self) -> dict[str, str]:
        return {"installMethod": self.cfg.install_method}

    def save_settings(self, *, install_method: str) -> dict[str, str]:
        if install_method not in INSTALL_METHODS:
            raise SkillStudioError(f"Unknown install method {install_method!r}. Expected one of: {', '.join(INSTALL_METHODS)}.")
        self.cfg = replace(self.cfg, install_method=install_method)
        save_config(self.cfg, self._config_file)
        return self.get_settings()
