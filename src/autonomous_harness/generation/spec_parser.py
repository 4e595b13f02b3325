"""Application spec file parser.

Loads an AppSpec from either JSON (AppSpec fields, camelCase or snake_case)
or Markdown laid out like:

    # Todo App

    A small app for tracking tasks.

    ## Core Features
    - Task list
    - Tags

    ## Tech Stack
    - backend: FastAPI
    - database: SQLite

    ## Success Criteria
    - Users can add a task

    ## Constraints
    - Runs offline
"""

import json
import re
from pathlib import Path

from pydantic import ValidationError

from ..errors import SpecError
from ..models import AppSpec, TechStack

JSON_EXTENSIONS: set[str] = {".json"}
MARKDOWN_EXTENSIONS: set[str] = {".md", ".markdown", ".txt"}
SUPPORTED_EXTENSIONS: set[str] = JSON_EXTENSIONS | MARKDOWN_EXTENSIONS

# Markdown section titles (lowercased) mapped to AppSpec list fields
LIST_SECTIONS = {
    "core features": "core_features",
    "features": "core_features",
    "success criteria": "success_criteria",
    "constraints": "constraints",
}
TECH_STACK_SECTION = "tech stack"

BULLET = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*\S)\s*$")
KEY_VALUE = re.compile(r"^(?P<key>[A-Za-z ]+?)\s*:\s*(?P<value>.+)$")


class SpecParser:
    """Parser for application spec files."""

    def __init__(self, spec_path: Path | str):
        """Initialize the parser.

        Args:
            spec_path: Path to the spec file.

        Raises:
            FileNotFoundError: If the spec file doesn't exist.
            ValueError: If the file extension is not supported.
        """
        self.spec_path = Path(spec_path).resolve()

        if not self.spec_path.is_file():
            raise FileNotFoundError(f"Specification file not found: {self.spec_path}")

        suffix = self.spec_path.suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise ValueError(
                f"Unsupported file extension: {suffix}. "
                f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
            )

    def parse(self) -> AppSpec:
        """Parse the spec file.

        Raises:
            SpecError: If the app spec is malformed, unnamed or has no core features.
        """
        content = self.spec_path.read_text(encoding="utf-8")
        if self.spec_path.suffix.lower() in JSON_EXTENSIONS:
            spec = self._parse_json(content)
        else:
            spec = self.parse_markdown(content)

        if not spec.name.strip():
            raise SpecError(f"Spec has no name: {self.spec_path}")
        if not spec.core_features:
            raise SpecError(f"Spec lists no core features: {self.spec_path}")
        return spec

    def _parse_json(self, content: str) -> AppSpec:
        try:
            return AppSpec.model_validate(json.loads(content))
        except json.JSONDecodeError as e:
            raise SpecError(f"Invalid JSON in {self.spec_path}: {e}") from e
        except ValidationError as e:
            raise SpecError(f"Invalid app spec in {self.spec_path}: {e}") from e

    @staticmethod
    def parse_markdown(content: str) -> AppSpec:
        """Build an AppSpec from markdown content."""
        name = ""
        description_lines: list[str] = []
        lists: dict[str, list[str]] = {field: [] for field in set(LIST_SECTIONS.values())}
        tech: dict[str, str] = {}

        section: str | None = None
        description_done = False

        for raw in content.splitlines():
            line = raw.strip()

            if line.startswith("# ") and not name:
                name = line[2:].strip()
                continue

            if line.startswith("#"):
                section = line.lstrip("#").strip().lower()
                description_done = True
                continue

            if section is None:
                # First paragraph after the title is the description
                if not line:
                    if description_lines:
                        description_done = True
                    continue
                if name and not description_done:
                    description_lines.append(line)
                continue

            bullet = BULLET.match(raw)
            if not bullet:
                continue
            item = bullet.group(1).strip()

            if section == TECH_STACK_SECTION:
                kv = KEY_VALUE.match(item)
                if kv:
                    key = kv.group("key").strip().lower()
                    if key in TechStack.model_fields:
                        tech[key] = kv.group("value").strip()
            elif section in LIST_SECTIONS:
                lists[LIST_SECTIONS[section]].append(item)

        return AppSpec(
            name=name,
            description=" ".join(description_lines),
            core_features=lists["core_features"],
            tech_stack=TechStack(**tech),
            success_criteria=lists["success_criteria"],
            constraints=lists["constraints"],
        )
