import json
import tempfile
import unittest
from pathlib import Path

from skillstudio.client import SkillStudioError
from skillstudio.sources import (
    DEFAULT_CATALOG_REPOS,
    RepositorySource,
    detect_skills_path,
    load_catalog_sources,
    merge_sources,
    parse_repo_ref,
    resolve_skills_path,
)


class TestResolveSkillsPath(unittest.TestCase):
    def test_suffix_selects_root(self) -> None:
        self.assertEqual(resolve_skills_path("foo", "bar-skill"), ".")

    def test_default_is_skills_folder(self) -> None:
        self.assertEqual(resolve_skills_path("foo", "bar"), "skills/")

    def test_known_single_skill_repo(self) -> None:
        self.assertEqual(resolve_skills_path("heredotnow", "skill"), ".")

    def test_override_wins(self) -> None:
        self.assertEqual(resolve_skills_path("foo", "bar-skill", "plugins/"), "plugins/")
        self.assertEqual(resolve_skills_path("foo", "bar", "./"), ".")

    def test_blank_override_is_ignored(self) -> None:
        self.assertEqual(resolve_skills_path("foo", "bar", "  "), "skills/")

    def test_source_uses_resolution(self) -> None:
        self.assertEqual(RepositorySource("foo", "bar-skill").resolved_skills_path, ".")
        self.assertEqual(RepositorySource("foo", "bar").resolved_skills_path, "skills/")


class TestParseRepoRef(unittest.TestCase):
    def test_accepts_supported_forms(self) -> None:
        for value in (
            "anthropics/skills",
            "https://github.com/anthropics/skills",
            "https://github.com/anthropics/skills.git",
            "https://github.com/anthropics/skills/",
            "git@github.com:anthropics/skills.git",
            "  anthropics/skills  ",
        ):
            with self.subTest(value=value):
                self.assertEqual(parse_repo_ref(value), ("anthropics", "skills"))

    def test_rejects_invalid(self) -> None:
        for value in (
            "",
            "anthropics",
            "a/b/c",
            "https://gitlab.com/a/b",
            "-bad/repo",
            "owner/..",
            "owner/has space",
        ):
            with self.subTest(value=value):
                with self.assertRaises(SkillStudioError):
                    parse_repo_ref(value)


class TestCatalog(unittest.TestCase):
    def test_missing_file_yields_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            sources = load_catalog_sources(Path(td) / "catalog.json")
        self.assertEqual([s.key for s in sources], list(DEFAULT_CATALOG_REPOS))

    def test_entries_are_parsed_in_order(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "catalog.json"
            path.write_text(
                json.dumps(
                    {
                        "repos": [
                            "a/one",
                            {"url": "https://github.com/b/two", "skillsPath": "plugins/", "highlight": True},
                            {"owner": "c", "repo": "three", "branch": "dev"},
                            "a/one",
                            {"url": "https://example.com/x/y"},
                            42,
                        ]
                    }
                ),
                encoding="utf-8",
            )
            with self.assertLogs("skillstudio.sources", level="WARNING"):
                sources = load_catalog_sources(path)

        self.assertEqual([s.key for s in sources], ["a/one", "b/two", "c/three"])
        self.assertEqual(sources[1].resolved_skills_path, "plugins/")
        self.assertTrue(sources[1].highlight)
        self.assertEqual(sources[2].branch, "dev")

    def test_unreadable_catalog_raises(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "catalog.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(SkillStudioError):
                load_catalog_sources(path)

    def test_merge_keeps_catalog_first_and_drops_duplicates(self) -> None:
        catalog = [RepositorySource("a", "one"), RepositorySource("b", "two")]
        custom = [RepositorySource("b", "two", is_custom=True), RepositorySource("c", "three", is_custom=True)]
        merged = merge_sources(catalog, custom)
        self.assertEqual([s.key for s in merged], ["a/one", "b/two", "c/three"])
        self.assertFalse(merged[1].is_custom)

    def test_source_dict_round_trip(self) -> None:
        source = RepositorySource("a", "one", branch="dev", skills_path="plugins/", is_custom=True)
        d = source.to_dict()
        self.assertEqual(d["skillsPath"], "plugins/")
        self.assertTrue(d["isCustom"])
        self.assertEqual(RepositorySource.from_dict(d), source)

    def test_source_dict_keeps_heuristic_path_apart_from_override(self) -> None:
        source = RepositorySource("a", "one")
        d = source.to_dict()
        self.assertNotIn("skillsPath", d)
        self.assertEqual(d["resolvedSkillsPath"], "skills/")
        restored = RepositorySource.from_dict(d)
        self.assertIsNone(restored.skills_path)
        self.assertEqual(restored, source)
        self.assertEqual(RepositorySource("a", "one-skill").to_dict()["resolvedSkillsPath"], ".")


class TestDetectSkillsPath(unittest.TestCase):
    def _skill(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "SKILL.md").write_text("---\nname: x\n---\n", encoding="utf-8")

    def test_picks_folder_with_most_skills(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td)
            self._skill(repo / "skills" / "a")
            self._skill(repo / "src" / "skills" / "a")
            self._skill(repo / "src" / "skills" / "b")
            self.assertEqual(detect_skills_path(repo), "src/skills/")

    def test_root_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td)
            self._skill(repo)
            self.assertEqual(detect_skills_path(repo), ".")

    def test_nothing_detected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "skills").mkdir()
            self.assertIsNone(detect_skills_path(Path(td)))


if __name__ == "__main__":
    unittest.main()
