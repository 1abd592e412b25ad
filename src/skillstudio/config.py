from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path, user_data_path

APP_NAME = "skillstudio"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 15.0
DEFAULT_GIT_TIMEOUT_S = 120.0
DEFAULT_MAX_WORKERS = 4
INSTALL_METHODS = ("copy", "npx")
DEFAULT_INSTALL_METHOD = "copy"

FAVORITES_FILENAME = "favorites.json"
CUSTOM_REPOS_FILENAME = "custom-repos.json"
FETCHED_REPOS_FILENAME = "fetched-repos.json"
CATALOG_FILENAME = "catalog.json"


@dataclass(frozen=True)
class Config:
    library_dir: str | None = None  # default: <user data dir>/library
    installed_skills_dir: str | None = None  # default: ~/.claude/skills
    catalog_path: str | None = None  # default: <config dir>/catalog.json
    github_api_url: str = DEFAULT_GITHUB_API_URL
    github_token: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    git_timeout_s: float = DEFAULT_GIT_TIMEOUT_S
    max_workers: int = DEFAULT_MAX_WORKERS
    install_method: str = DEFAULT_INSTALL_METHOD  # "copy" or "npx"

    @property
    def library_path(self) -> Path:
        if self.library_dir:
            return Path(self.library_dir).expanduser()
        return user_data_path(APP_NAME) / "library"

    @property
    def repos_path(self) -> Path:
        return self.library_path / "repos"

    @property
    def index_path(self) -> Path:
        return self.library_path / "index.json"

    @property
    def installed_skills_path(self) -> Path:
        if self.installed_skills_dir:
            return Path(self.installed_skills_dir).expanduser()
        return Path.home() / ".claude" / "skills"

    @property
    def catalog_file(self) -> Path:
        if self.catalog_path:
            return Path(self.catalog_path).expanduser()
        return state_dir() / CATALOG_FILENAME


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("SKILLSTUDIO_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path(APP_NAME) / "config.json"


def state_dir(path_override: str | Path | None = None) -> Path:
    """Directory holding favorites, custom repos and fetch timestamps (next to config.json)."""
    return config_path(path_override).parent


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    return Config(**filtered)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Best-effort permissions hardening (the file may hold a GitHub token).
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def merge_env(cfg: Config) -> Config:
    # Env overrides the config file; CLI flags are applied on top by the caller.
    token = os.getenv("SKILLSTUDIO_GITHUB_TOKEN") or cfg.github_token
    library_dir = os.getenv("SKILLSTUDIO_LIBRARY_DIR") or cfg.library_dir
    return replace(cfg, github_token=token, library_dir=library_dir)


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
