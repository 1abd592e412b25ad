from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# Tried in this order; the first existing file wins.
MANIFEST_FILENAMES = ("SKILL.md", "skill.md", "Skill.md")

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


@dataclass(frozen=True)
class SkillDescriptor:
    name: str
    description: str = ""
    license: str | None = None


def find_manifest(directory: Path) -> Path | None:
    for filename in MANIFEST_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def _scalar_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def parse_frontmatter(text: str) -> dict[str, Any] | None:
    m = _FRONTMATTER_RE.match(text)
    if not m:
        return None
    try:
        data = yaml.safe_load(m.group(1))
    except yaml.YAMLError as e:
        logger.debug("Invalid manifest frontmatter: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    return data


def parse_manifest_text(text: str, *, fallback_name: str) -> SkillDescriptor | None:
    """
    Parse the fenced YAML header of a manifest.

    Returns None when the header is missing or unparseable. A header without a
    usable ``name`` falls back to ``fallback_name`` (the containing directory).
    """
    frontmatter = parse_frontmatter(text.lstrip("\ufeff"))
    if frontmatter is None:
        return None

    name = _scalar_text(frontmatter.get("name")) or fallback_name
    description = _scalar_text(frontmatter.get("description"))
    license_value = _scalar_text(frontmatter.get("license")) or None
    return SkillDescriptor(name=name, description=description, license=license_value)


def parse_manifest(path: Path) -> SkillDescriptor | None:
    try:
        text = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read manifest %s: %s", path, e)
        return None

    descriptor = parse_manifest_text(text, fallback_name=path.parent.name)
    if descriptor is None:
        logger.warning("Skipping %s: no valid frontmatter block", path)
    return descriptor
