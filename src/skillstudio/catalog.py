from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Collection, Sequence

from .client import SkillStudioError
from .config import DEFAULT_MAX_WORKERS
from .locator import SkillRecord, locate
from .sources import RepositorySource
from .state import write_json_atomic
from .sync import RepositorySynchronizer, SyncResult

logger = logging.getLogger(__name__)

INDEX_FORMAT_VERSION = "1.0.0"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class CatalogIndex:
    version: str
    built_at: str
    sources: tuple[RepositorySource, ...]
    records: tuple[SkillRecord, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastUpdated": self.built_at,
            "repositories": [s.to_dict() for s in self.sources],
            "skills": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CatalogIndex":
        repositories = raw.get("repositories")
        skills = raw.get("skills")
        if not isinstance(repositories, list) or not isinstance(skills, list):
            raise SkillStudioError("Catalog index is missing 'repositories' or 'skills'.")
        try:
            sources = tuple(RepositorySource.from_dict(r) for r in repositories if isinstance(r, dict))
            records = tuple(SkillRecord.from_dict(s) for s in skills if isinstance(s, dict))
        except KeyError as e:
            raise SkillStudioError(f"Catalog index record is missing field {e}.") from e
        return cls(
            version=str(raw.get("version", INDEX_FORMAT_VERSION)),
            built_at=str(raw.get("lastUpdated", "")),
            sources=sources,
            records=records,
        )

    def records_for(self, owner: str, repo: str) -> list[SkillRecord]:
        return [r for r in self.records if r.owner == owner and r.repo == repo]

    def find(self, skill_id: str) -> SkillRecord | None:
        for record in self.records:
            if record.id == skill_id:
                return record
        return None


@dataclass(frozen=True)
class SourceOutcome:
    source: RepositorySource
    sync: SyncResult | None  # None when the source was not synced in this run
    records: tuple[SkillRecord, ...] = ()


@dataclass(frozen=True)
class BuildReport:
    index: CatalogIndex
    outcomes: tuple[SourceOutcome, ...] = field(default_factory=tuple)

    @property
    def failures(self) -> list[SourceOutcome]:
        return [o for o in self.outcomes if o.sync is not None and not o.sync.ok]


def load_index(path: Path) -> CatalogIndex | None:
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SkillStudioError(f"Failed to read catalog index {path}: {e}") from e
    if not isinstance(raw, dict):
        raise SkillStudioError(f"Catalog index {path} is not a JSON object.")
    return CatalogIndex.from_dict(raw)


def save_index(path: Path, index: CatalogIndex) -> None:
    try:
        write_json_atomic(path, index.to_dict())
    except OSError as e:
        raise SkillStudioError(f"Failed to write catalog index {path}: {e}") from e


def _dedupe_records(records: list[SkillRecord]) -> list[SkillRecord]:
    # Same id twice: the later record wins, keeping the first one's position.
    positions: dict[str, int] = {}
    out: list[SkillRecord] = []
    for record in records:
        if record.id in positions:
            logger.warning("Duplicate skill id %s; %s replaces %s", record.id, record.local_path, out[positions[record.id]].local_path)
            out[positions[record.id]] = record
            continue
        positions[record.id] = len(out)
        out.append(record)
    return out


class CatalogBuilder:
    def __init__(
        self,
        *,
        synchronizer: RepositorySynchronizer,
        library_root: Path,
        index_path: Path,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.synchronizer = synchronizer
        self.library_root = library_root
        self.index_path = index_path
        self.max_workers = max(1, max_workers)

    def _process(self, source: RepositorySource, do_sync: bool) -> SourceOutcome:
        result = self.synchronizer.sync(source) if do_sync else None
        if not self.synchronizer.has_working_copy(source):
            return SourceOutcome(source=source, sync=result)

        try:
            records = locate(
                source.owner,
                source.repo,
                self.synchronizer.repo_path(source),
                source.resolved_skills_path,
                library_root=self.library_root,
            )
        except OSError as e:
            logger.warning("Could not scan %s: %s", source.key, e)
            return SourceOutcome(source=source, sync=result)
        logger.info("Found %d skills in %s", len(records), source.key)
        return SourceOutcome(source=source, sync=result, records=tuple(records))

    def run(self, sources: Sequence[RepositorySource], *, sync: bool | Collection[str] = True) -> BuildReport:
        """
        Sync and scan every source, then persist a fresh index.

        ``sync`` selects which sources are fetched first: all (True), none
        (False), or only the given "owner/repo" keys. Every source with a working
        copy is scanned regardless.
        """
        sources = tuple(sources)

        def wants_sync(source: RepositorySource) -> bool:
            if isinstance(sync, bool):
                return sync
            return source.key in sync

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="skillstudio-build") as pool:
            futures = [pool.submit(self._process, source, wants_sync(source)) for source in sources]
            outcomes = tuple(f.result() for f in futures)

        records: list[SkillRecord] = []
        for outcome in outcomes:
            records.extend(outcome.records)

        index = CatalogIndex(
            version=INDEX_FORMAT_VERSION,
            built_at=_iso_now(),
            sources=sources,
            records=tuple(_dedupe_records(records)),
        )
        save_index(self.index_path, index)
        logger.info("Indexed %d skills from %d repositories into %s", len(index.records), len(sources), self.index_path)
        return BuildReport(index=index, outcomes=outcomes)

    def build(self, sources: Sequence[RepositorySource], *, sync: bool | Collection[str] = True) -> CatalogIndex:
        return self.run(sources, sync=sync).index
