from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict, replace
from typing import Any

from ._version import __version__
from .client import SkillStudioError, SkillStudioHTTPError
from .config import INSTALL_METHODS, Config, config_path, load_config, merge_env, redact_token, save_config
from .reconcile import ViewRepository, ViewSkill
from .service import SkillStudio
from .sources import parse_repo_ref


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _flag(v: bool) -> str:
    return "yes" if v else ""


def _truncate(s: str, width: int = 60) -> str:
    s = " ".join(s.split())
    if len(s) <= width:
        return s
    return s[: width - 3] + "..."


def _print_skills(skills: list[ViewSkill]) -> None:
    rows: list[list[str]] = [["ID", "INSTALLED", "FAVORITE", "DESCRIPTION"]]
    for s in skills:
        rows.append([s.id, _flag(s.is_installed), _flag(s.is_favorite), _truncate(s.record.description)])
    _print_table(rows)


def _print_repos(repos: list[ViewRepository]) -> None:
    rows: list[list[str]] = [["REPO", "SKILLS_PATH", "SKILLS", "FETCHED", "FAVORITE", "CUSTOM", "LAST_FETCHED"]]
    for r in repos:
        rows.append(
            [
                r.key,
                r.source.resolved_skills_path,
                str(r.skill_count),
                _flag(r.is_fetched),
                _flag(r.is_favorite),
                _flag(r.source.is_custom),
                r.last_fetched or "",
            ]
        )
    _print_table(rows)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillstudio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Browse, fetch and install agent skills published in GitHub repositories.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              SKILLSTUDIO_CONFIG_PATH, SKILLSTUDIO_GITHUB_TOKEN, SKILLSTUDIO_LIBRARY_DIR
            """
        ),
    )
    p.add_argument("--version", action="version", version=f"skillstudio {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr")

    sub = p.add_subparsers(dest="cmd", required=True)

    # config
    cfg = sub.add_parser("config", help="Manage local config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config (token redacted)")

    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--library-dir", help="Where repositories are cloned and the index is kept")
    cfg_set.add_argument("--installed-skills-dir", help="Where skills are installed (default: ~/.claude/skills)")
    cfg_set.add_argument("--catalog-path", help="JSON file listing the catalog repositories")
    cfg_set.add_argument("--github-api-url")
    cfg_set.add_argument("--github-token")
    cfg_set.add_argument("--timeout-s", type=float, help="HTTP timeout in seconds")
    cfg_set.add_argument("--git-timeout-s", type=float, help="Per-repository git timeout in seconds")
    cfg_set.add_argument("--max-workers", type=int, help="Repositories synced in parallel")
    cfg_set.add_argument("--install-method", choices=INSTALL_METHODS)

    # catalog
    build = sub.add_parser("build", help="Sync every configured repository and rebuild the index")
    build.add_argument("--no-sync", action="store_true", help="Re-index existing working copies without fetching")
    build.add_argument("--json", action="store_true", help="Output JSON")

    fetch = sub.add_parser("fetch", help="Sync one repository and rebuild the index")
    fetch.add_argument("repo", help="Repository as owner/repo or GitHub URL")
    fetch.add_argument("--json", action="store_true", help="Output JSON")

    skills = sub.add_parser("skills", help="List indexed skills")
    skills.add_argument("--installed", action="store_true", help="Only installed skills")
    skills.add_argument("--favorites", action="store_true", help="Only favorite skills")
    skills.add_argument("--repo", help="Only skills from owner/repo")
    skills.add_argument("--json", action="store_true", help="Output JSON")

    repos = sub.add_parser("repos", help="List configured repositories")
    repos.add_argument("--json", action="store_true", help="Output JSON")

    show = sub.add_parser("show", help="Print a skill's manifest")
    show.add_argument("skill_id", help="Skill id in form owner/repo/name")

    # local install / uninstall
    install = sub.add_parser("install", aliases=["i"], help="Install an indexed skill")
    install.add_argument("skill_id", help="Skill id in form owner/repo/name")
    install.add_argument("--method", choices=INSTALL_METHODS, help="Install method (default: from config)")

    uninstall = sub.add_parser("uninstall", aliases=["rm"], help="Remove an installed skill")
    uninstall.add_argument("name", help="Installed skill folder name")

    # favorites
    fav = sub.add_parser("favorites", help="Manage favorites")
    fav_sub = fav.add_subparsers(dest="subcmd", required=True)
    fav_list = fav_sub.add_parser("list", help="Show favorite skills and repositories")
    fav_list.add_argument("--json", action="store_true", help="Output JSON")
    fav_skill = fav_sub.add_parser("skill", help="Toggle a favorite skill")
    fav_skill.add_argument("skill_id")
    fav_repo = fav_sub.add_parser("repo", help="Toggle a favorite repository")
    fav_repo.add_argument("repo", help="Repository as owner/repo")

    # custom repositories
    repo = sub.add_parser("repo", help="Manage custom repositories")
    repo_sub = repo.add_subparsers(dest="subcmd", required=True)
    repo_add = repo_sub.add_parser("add", help="Add and fetch a custom repository")
    repo_add.add_argument("repo", help="Repository as owner/repo or GitHub URL")
    repo_add.add_argument("--json", action="store_true", help="Output JSON")
    repo_remove = repo_sub.add_parser("remove", help="Remove a custom repository")
    repo_remove.add_argument("repo")
    repo_readme = repo_sub.add_parser("readme", help="Print a fetched repository's README")
    repo_readme.add_argument("repo")

    return p


def _service_from_cfg(cfg: Config) -> SkillStudio:
    return SkillStudio(cfg)


def _load_service() -> SkillStudio:
    return _service_from_cfg(merge_env(load_config()))


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg = load_config()
        d = asdict(cfg)
        d["github_token"] = redact_token(cfg.github_token)
        _print_json(d)
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        updates: dict[str, Any] = {}
        for field_name in (
            "library_dir",
            "installed_skills_dir",
            "catalog_path",
            "github_api_url",
            "github_token",
            "timeout_s",
            "git_timeout_s",
            "max_workers",
            "install_method",
        ):
            value = getattr(args, field_name)
            if value is not None:
                updates[field_name] = value
        path = save_config(replace(cfg, **updates))
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_build(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        report = studio.build_catalog(sync=not args.no_sync)

    if args.json:
        _print_json(
            {
                "index": report.index.to_dict(),
                "failures": [{"repo": o.source.key, "message": o.sync.message} for o in report.failures if o.sync],
            }
        )
        return 0 if not report.failures else 1

    for o in report.failures:
        assert o.sync is not None
        print(f"failed: {o.source.key}: {o.sync.message}", file=sys.stderr)
    print(f"Indexed {len(report.index.records)} skills from {len(report.index.sources)} repositories.")
    return 0 if not report.failures else 1


def cmd_fetch(args: argparse.Namespace) -> int:
    owner, name = parse_repo_ref(args.repo)
    with _load_service() as studio:
        result = studio.fetch_repo(owner, name)
    if args.json:
        _print_json(result.to_dict())
    elif result.ok:
        print(result.message)
    else:
        print(f"error: {result.message}", file=sys.stderr)
    return 0 if result.ok else 1


def cmd_skills(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        skills = studio.get_all_skills()

    if args.installed:
        skills = [s for s in skills if s.is_installed]
    if args.favorites:
        skills = [s for s in skills if s.is_favorite]
    if args.repo:
        owner, name = parse_repo_ref(args.repo)
        skills = [s for s in skills if s.record.owner == owner and s.record.repo == name]

    if args.json:
        _print_json([s.to_dict() for s in skills])
        return 0
    _print_skills(skills)
    return 0


def cmd_repos(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        repos = studio.get_all_repos()
    if args.json:
        _print_json([r.to_dict() for r in repos])
        return 0
    _print_repos(repos)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        content = studio.get_skill_content(args.skill_id)
    if content is None:
        raise SkillStudioError(f"Manifest for {args.skill_id} is not available locally. Fetch the repository first.")
    print(content, end="" if content.endswith("\n") else "\n")
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        record = studio.load_index().find(args.skill_id)
        if record is None:
            raise SkillStudioError(f"Unknown skill id: {args.skill_id}")
        message = studio.install_skill(
            record.owner,
            record.repo,
            record.name,
            record.path,
            record.skills_path,
            method=args.method,
        )
    print(message)
    return 0


def cmd_uninstall(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        removed = studio.uninstall_skill(args.name)
    print(f"Removed: {args.name}" if removed else f"Not installed: {args.name}")
    return 0


def cmd_favorites(args: argparse.Namespace) -> int:
    with _load_service() as studio:
        if args.subcmd == "list":
            favorites = studio.get_favorites()
            if args.json:
                _print_json(favorites.to_dict())
                return 0
            rows: list[list[str]] = [["KIND", "ID"]]
            rows.extend(["repo", key] for key in favorites.repos)
            rows.extend(["skill", sid] for sid in favorites.skills)
            _print_table(rows)
            return 0

        if args.subcmd == "skill":
            favorites = studio.toggle_favorite_skill(args.skill_id)
            state = "added" if args.skill_id in favorites.skills else "removed"
            print(f"{state}: {args.skill_id}")
            return 0

        if args.subcmd == "repo":
            owner, name = parse_repo_ref(args.repo)
            key = f"{owner}/{name}"
            favorites = studio.toggle_favorite_repo(key)
            state = "added" if key in favorites.repos else "removed"
            print(f"{state}: {key}")
            return 0

    raise AssertionError("unreachable")


def cmd_repo(args: argparse.Namespace) -> int:
    owner, name = parse_repo_ref(args.repo)
    with _load_service() as studio:
        if args.subcmd == "add":
            result = studio.add_custom_repo(owner, name)
            if args.json:
                _print_json(result.to_dict())
            elif result.ok:
                print(result.message)
            else:
                print(f"error: {result.message}", file=sys.stderr)
            return 0 if result.ok else 1

        if args.subcmd == "remove":
            if not studio.remove_custom_repo(owner, name):
                raise SkillStudioError(f"{owner}/{name} is not a custom repository.")
            print(f"Removed: {owner}/{name}")
            return 0

        if args.subcmd == "readme":
            readme = studio.get_repo_readme(owner, name)
            if readme is None:
                raise SkillStudioError(f"No README found for {owner}/{name}. Fetch the repository first.")
            print(readme, end="" if readme.endswith("\n") else "\n")
            return 0

    raise AssertionError("unreachable")


def _format_http_error(err: SkillStudioHTTPError) -> str:
    if err.status_code == 401:
        return "HTTP 401 Unauthorized. Check the configured GitHub token."
    if err.status_code == 403:
        return "HTTP 403 Forbidden. The GitHub API rate limit may be exhausted; configure a token."
    return f"HTTP {err.status_code}"


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "build":
            return cmd_build(args)
        if args.cmd == "fetch":
            return cmd_fetch(args)
        if args.cmd == "skills":
            return cmd_skills(args)
        if args.cmd == "repos":
            return cmd_repos(args)
        if args.cmd == "show":
            return cmd_show(args)
        if args.cmd in ("install", "i"):
            return cmd_install(args)
        if args.cmd in ("uninstall", "rm"):
            return cmd_uninstall(args)
        if args.cmd == "favorites":
            return cmd_favorites(args)
        if args.cmd == "repo":
            return cmd_repo(args)
        raise AssertionError("unreachable")
    except SkillStudioHTTPError as e:
        print(f"error: {_format_http_error(e)}", file=sys.stderr)
        return 1
    except SkillStudioError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
