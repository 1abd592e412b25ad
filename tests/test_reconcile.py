import unittest
from pathlib import Path

from skillstudio.catalog import CatalogIndex
from skillstudio.locator import SkillRecord
from skillstudio.reconcile import view
from skillstudio.sources import RepositorySource
from skillstudio.state import Favorites, InstalledSet, InstalledSkill


def _record(owner: str, repo: str, name: str) -> SkillRecord:
    return SkillRecord(
        id=f"{owner}/{repo}/{name}",
        name=name,
        description="",
        owner=owner,
        repo=repo,
        path=name,
        local_path=f"repos/{owner}/{repo}/skills/{name}",
        skills_path="skills/",
    )


INDEX = CatalogIndex(
    version="1.0.0",
    built_at="2026-01-01T00:00:00Z",
    sources=(
        RepositorySource("a", "one"),
        RepositorySource("b", "two", is_custom=True),
        RepositorySource("c", "never"),
    ),
    records=(_record("a", "one", "pdf"), _record("a", "one", "docx"), _record("b", "two", "pdf")),
)


class TestView(unittest.TestCase):
    def test_flags_and_counts(self) -> None:
        skills, repos = view(
            INDEX,
            Favorites(skills=("a/one/docx",), repos=("b/two",)),
            {"docx"},
            is_fetched=lambda s: s.key != "c/never",
            last_fetched={"a/one": "2026-01-01T00:00:00Z"},
        )

        by_id = {s.id: s for s in skills}
        self.assertTrue(by_id["a/one/docx"].is_installed)
        self.assertTrue(by_id["a/one/docx"].is_favorite)
        self.assertFalse(by_id["a/one/pdf"].is_installed)
        self.assertTrue(by_id["a/one/pdf"].is_fetched)

        self.assertEqual([r.key for r in repos], ["a/one", "b/two", "c/never"])
        self.assertEqual([r.skill_count for r in repos], [2, 1, 0])
        self.assertEqual([r.is_favorite for r in repos], [False, True, False])
        self.assertEqual([r.is_fetched for r in repos], [True, True, False])
        self.assertEqual(repos[0].last_fetched, "2026-01-01T00:00:00Z")
        self.assertIsNone(repos[1].last_fetched)

    def test_installed_matches_by_name_across_repositories(self) -> None:
        skills, _ = view(INDEX, Favorites(), {"pdf"}, is_fetched=lambda s: True)
        installed = sorted(s.id for s in skills if s.is_installed)
        self.assertEqual(installed, ["a/one/pdf", "b/two/pdf"])

    def test_accepts_installed_set(self) -> None:
        installed = InstalledSet(skills={"pdf": InstalledSkill(name="pdf", path=Path("/tmp/pdf"), is_symlink=False)})
        skills, _ = view(INDEX, Favorites(), installed, is_fetched=lambda s: True)
        self.assertEqual(sorted(s.id for s in skills if s.is_installed), ["a/one/pdf", "b/two/pdf"])

    def test_view_is_pure(self) -> None:
        args = (INDEX, Favorites(skills=("a/one/pdf",)), {"docx"})
        first = view(*args, is_fetched=lambda s: True)
        second = view(*args, is_fetched=lambda s: True)
        self.assertEqual(first, second)
        self.assertEqual(INDEX.records[0].id, "a/one/pdf")

    def test_dict_shapes(self) -> None:
        skills, repos = view(INDEX, Favorites(), set(), is_fetched=lambda s: False)
        d = skills[0].to_dict()
        self.assertEqual(d["id"], "a/one/pdf")
        self.assertFalse(d["isInstalled"])
        self.assertFalse(d["isFetched"])
        r = repos[1].to_dict()
        self.assertTrue(r["isCustom"])
        self.assertEqual(r["skillsPath"], "skills/")
        self.assertEqual(r["skillCount"], 1)


if __name__ == "__main__":
    unittest.main()
