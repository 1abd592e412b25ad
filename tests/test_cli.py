import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from skillstudio.catalog import BuildReport, CatalogIndex, SourceOutcome
from skillstudio.cli import _format_http_error, build_parser, main
from skillstudio.client import SkillStudioError, SkillStudioHTTPError
from skillstudio.config import Config, load_config, save_config
from skillstudio.service import FetchResult, SkillStudio
from skillstudio.sources import RepositorySource
from skillstudio.sync import SyncResult


class TreeGit:
    def __init__(self, trees: dict[str, dict[str, str]]) -> None:
        self.trees = trees

    def run(self, args, *, cwd=None, timeout_s=None) -> str:
        args = list(args)
        if args[0] == "pull":
            return ""
        url, target = args[-2], Path(args[-1])
        (target / ".git").mkdir(parents=True)
        for rel, body in self.trees.get(url, {}).items():
            path = target / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(body, encoding="utf-8")
        return ""


class FakeGitHub:
    def resolve_branch(self, owner: str, repo: str) -> str | None:
        return None

    def close(self) -> None:
        pass


TREES = {
    "https://github.com/bob/collection.git": {
        "skills/a/SKILL.md": "---\nname: Alpha\ndescription: First skill\n---\n# Alpha\n",
        "README.md": "# Collection\n",
    },
}


def _mock_studio(studio: MagicMock) -> MagicMock:
    studio.__enter__.return_value = studio
    studio.__exit__.return_value = False
    return studio


class TestParser(unittest.TestCase):
    def test_commands_parse(self) -> None:
        p = build_parser()
        self.assertTrue(p.parse_args(["build", "--no-sync"]).no_sync)
        self.assertEqual(p.parse_args(["fetch", "o/r"]).repo, "o/r")
        self.assertEqual(p.parse_args(["install", "o/r/n", "--method", "npx"]).method, "npx")
        self.assertEqual(p.parse_args(["i", "o/r/n"]).cmd, "i")
        self.assertEqual(p.parse_args(["favorites", "repo", "o/r"]).subcmd, "repo")
        self.assertTrue(p.parse_args(["-v", "repos"]).verbose)

    def test_invalid_method_is_rejected(self) -> None:
        with patch("sys.stderr", new=io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["install", "o/r/n", "--method", "ftp"])


class TestCommandsWithMockedService(unittest.TestCase):
    def test_fetch_prints_message(self) -> None:
        studio = _mock_studio(MagicMock())
        studio.fetch_repo.return_value = FetchResult(key="o/r", ok=True, message="Fetched o/r (3 skills)", skill_count=3)
        with (
            patch("skillstudio.cli._load_service", return_value=studio),
            patch("sys.stdout", new=io.StringIO()) as stdout,
        ):
            rc = main(["fetch", "https://github.com/o/r"])
        self.assertEqual(rc, 0)
        studio.fetch_repo.assert_called_once_with("o", "r")
        self.assertIn("Fetched o/r", stdout.getvalue())

    def test_fetch_failure_exits_1(self) -> None:
        studio = _mock_studio(MagicMock())
        studio.fetch_repo.return_value = FetchResult(key="o/r", ok=False, message="network down")
        with (
            patch("skillstudio.cli._load_service", return_value=studio),
            patch("sys.stdout", new=io.StringIO()),
            patch("sys.stderr", new=io.StringIO()) as stderr,
        ):
            rc = main(["fetch", "o/r"])
        self.assertEqual(rc, 1)
        self.assertIn("error: network down", stderr.getvalue())

    def test_build_reports_failures(self) -> None:
        source = RepositorySource("o", "r")
        report = BuildReport(
            index=CatalogIndex(version="1.0.0", built_at="", sources=(source,), records=()),
            outcomes=(SourceOutcome(source=source, sync=SyncResult(key="o/r", ok=False, action="clone", message="boom")),),
        )
        studio = _mock_studio(MagicMock())
        studio.build_catalog.return_value = report
        with (
            patch("skillstudio.cli._load_service", return_value=studio),
            patch("sys.stdout", new=io.StringIO()) as stdout,
            patch("sys.stderr", new=io.StringIO()) as stderr,
        ):
            rc = main(["build", "--no-sync"])
        self.assertEqual(rc, 1)
        studio.build_catalog.assert_called_once_with(sync=False)
        self.assertIn("failed: o/r: boom", stderr.getvalue())
        self.assertIn("Indexed 0 skills from 1 repositories.", stdout.getvalue())

    def test_errors_are_printed(self) -> None:
        studio = _mock_studio(MagicMock())
        studio.get_skill_content.side_effect = SkillStudioError("Unknown skill id: x/y/z")
        with (
            patch("skillstudio.cli._load_service", return_value=studio),
            patch("sys.stderr", new=io.StringIO()) as stderr,
        ):
            rc = main(["show", "x/y/z"])
        self.assertEqual(rc, 1)
        self.assertEqual(stderr.getvalue().strip(), "error: Unknown skill id: x/y/z")

    def test_http_errors_are_formatted(self) -> None:
        studio = _mock_studio(MagicMock())
        studio.get_all_repos.side_effect = SkillStudioHTTPError(403, "rate limited")
        with (
            patch("skillstudio.cli._load_service", return_value=studio),
            patch("sys.stderr", new=io.StringIO()) as stderr,
        ):
            rc = main(["repos"])
        self.assertEqual(rc, 1)
        self.assertIn("HTTP 403", stderr.getvalue())

    def test_invalid_repo_reference(self) -> None:
        with patch("sys.stderr", new=io.StringIO()) as stderr:
            rc = main(["repo", "add", "not a repo"])
        self.assertEqual(rc, 1)
        self.assertIn("error: Invalid repository", stderr.getvalue())

    def test_format_http_error(self) -> None:
        self.assertIn("401", _format_http_error(SkillStudioHTTPError(401, "")))
        self.assertEqual(_format_http_error(SkillStudioHTTPError(502, "")), "HTTP 502")


class TestEndToEnd(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        base = Path(self._td.name)
        self.config_file = base / "config" / "config.json"
        catalog = base / "catalog.json"
        catalog.write_text(json.dumps({"repos": ["bob/collection"]}), encoding="utf-8")
        save_config(
            Config(
                library_dir=str(base / "library"),
                installed_skills_dir=str(base / "installed"),
                catalog_path=str(catalog),
            ),
            self.config_file,
        )
        self.installed = base / "installed"
        self._env = patch.dict(os.environ, {"SKILLSTUDIO_CONFIG_PATH": str(self.config_file)})
        self._env.start()
        os.environ.pop("SKILLSTUDIO_LIBRARY_DIR", None)
        os.environ.pop("SKILLSTUDIO_GITHUB_TOKEN", None)

        def factory(cfg: Config) -> SkillStudio:
            return SkillStudio(cfg, git=TreeGit(TREES), github=FakeGitHub())  # type: ignore[arg-type]

        self._factory = patch("skillstudio.cli._service_from_cfg", side_effect=factory)
        self._factory.start()

    def tearDown(self) -> None:
        self._factory.stop()
        self._env.stop()
        self._td.cleanup()

    def _run(self, *argv: str) -> tuple[int, str]:
        with patch("sys.stdout", new=io.StringIO()) as stdout:
            rc = main(list(argv))
        return rc, stdout.getvalue()

    def test_build_list_install_uninstall(self) -> None:
        rc, out = self._run("build")
        self.assertEqual(rc, 0)
        self.assertIn("Indexed 1 skills", out)

        rc, out = self._run("skills", "--json")
        self.assertEqual(rc, 0)
        skills = json.loads(out)
        self.assertEqual([s["id"] for s in skills], ["bob/collection/Alpha"])
        self.assertFalse(skills[0]["isInstalled"])

        rc, out = self._run("skills")
        self.assertIn("bob/collection/Alpha", out)
        self.assertIn("First skill", out)

        rc, out = self._run("install", "bob/collection/Alpha")
        self.assertEqual(rc, 0)
        self.assertTrue((self.installed / "Alpha" / "SKILL.md").is_file())

        rc, out = self._run("skills", "--installed", "--json")
        self.assertEqual([s["id"] for s in json.loads(out)], ["bob/collection/Alpha"])

        rc, out = self._run("uninstall", "Alpha")
        self.assertEqual(out.strip(), "Removed: Alpha")
        self.assertFalse((self.installed / "Alpha").exists())

    def test_show_and_readme(self) -> None:
        self._run("build")
        rc, out = self._run("show", "bob/collection/Alpha")
        self.assertEqual(rc, 0)
        self.assertIn("# Alpha", out)
        rc, out = self._run("repo", "readme", "bob/collection")
        self.assertEqual(out, "# Collection\n")

    def test_favorites_toggle(self) -> None:
        rc, out = self._run("favorites", "repo", "bob/collection")
        self.assertEqual(out.strip(), "added: bob/collection")
        rc, out = self._run("favorites", "list", "--json")
        self.assertEqual(json.loads(out), {"skills": [], "repos": ["bob/collection"]})
        rc, out = self._run("favorites", "repo", "bob/collection")
        self.assertEqual(out.strip(), "removed: bob/collection")

    def test_repos_table(self) -> None:
        self._run("build")
        rc, out = self._run("repos")
        self.assertEqual(rc, 0)
        lines = out.splitlines()
        self.assertTrue(lines[0].startswith("REPO"))
        self.assertIn("bob/collection", lines[1])

    def test_config_set_and_show(self) -> None:
        rc, out = self._run("config", "set", "--install-method", "npx", "--github-token", "ghp_abcdefghijklmnop")
        self.assertEqual(rc, 0)
        self.assertEqual(load_config(self.config_file).install_method, "npx")

        rc, out = self._run("config", "show")
        shown = json.loads(out)
        self.assertEqual(shown["install_method"], "npx")
        self.assertEqual(shown["github_token"], "ghp_ab...mnop")

        rc, out = self._run("config", "path")
        self.assertEqual(out.strip(), str(self.config_file))


if __name__ == "__main__":
    unittest.main()
