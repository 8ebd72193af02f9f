"""Read-only framework catalog.

Layout under the frameworks root:
    config.json                    # {"frameworks": [{id, name, path, manifest, enabled, ...}]}
    <path>/<manifest>              # {"domains": [{id, name, file}], totalControls, estimatedTime}
    <path>/<domain file>           # {"domain", "title", "level", "questions": [...]}

Framework ``path`` values are resolved relative to the root; a leading "/"
is ignored. Content is loaded once and cached until ``reload()``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gapcheck.models import Dependencies, Domain, Framework, Question
from gapcheck.resolver import DependencyIndex

logger = logging.getLogger(__name__)


@dataclass
class FrameworkStats:
    total_domains: int
    total_controls: int
    level1_controls: int
    level2_controls: int
    estimated_time: int


def _strs(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(str(v) for v in value)


def parse_question(data: dict[str, Any]) -> Question:
    deps = data.get("dependencies") or {}
    return Question(
        id=data["id"],
        control=data.get("control") or data["id"],
        question=data.get("question", ""),
        context=data.get("context", ""),
        examples=data.get("examples", ""),
        follow_up=data.get("followUp", ""),
        level=int(data.get("level", 1)),
        nist_source=data.get("nistSource"),
        assessment_objectives=_strs(data.get("assessmentObjectives")),
        dependencies=Dependencies(
            requires=_strs(deps.get("requires")),
            auto_fail=_strs(deps.get("autoFail")),
            skip_if_no=_strs(deps.get("skipIfNo")),
            skip_if_na=_strs(deps.get("skipIfNA")),
            enables=_strs(deps.get("enables")),
        ),
    )


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class FrameworkCatalog:
    """Discovers frameworks and serves their domains, questions and dependency index."""

    def __init__(self, root: Path, config_file: str = "config.json") -> None:
        self.root = Path(root)
        self.config_file = config_file
        self._frameworks: dict[str, Framework] | None = None
        self._indexes: dict[str, DependencyIndex] = {}

    # ── Loading ───────────────────────────────────────────────

    def _framework_dir(self, definition: dict[str, Any]) -> Path:
        return self.root / str(definition.get("path", definition["id"])).lstrip("/")

    def _load_domains(self, definition: dict[str, Any], manifest: dict[str, Any]) -> list[Domain]:
        base = self._framework_dir(definition)
        domains: list[Domain] = []
        for ref in manifest.get("domains", []):
            domain_path = base / ref["file"]
            try:
                data = _read_json(domain_path)
                questions = tuple(parse_question(q) for q in data.get("questions") or [])
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Failed to load domain %s from %s: %s", ref.get("id"), domain_path, e)
                continue
            domains.append(
                Domain(
                    id=ref.get("id") or data.get("domain", domain_path.stem),
                    title=data.get("title") or ref.get("name", ""),
                    level=int(data.get("level", 1)),
                    description=data.get("description", ""),
                    questions=questions,
                )
            )
        return domains

    def _load_framework(self, definition: dict[str, Any]) -> Framework | None:
        manifest_path = self._framework_dir(definition) / definition.get("manifest", "manifest.json")
        try:
            manifest = _read_json(manifest_path)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load manifest for %s: %s", definition["id"], e)
            return None
        return Framework(
            id=definition["id"],
            name=definition.get("name", definition["id"]),
            description=definition.get("description", ""),
            enabled=bool(definition.get("enabled", True)),
            estimated_time=int(manifest.get("estimatedTime", 60)),
            domains=tuple(self._load_domains(definition, manifest)),
        )

    def _load(self) -> dict[str, Framework]:
        config_path = self.root / self.config_file
        try:
            config = _read_json(config_path)
        except FileNotFoundError:
            logger.warning("Framework config not found: %s", config_path)
            return {}
        frameworks: dict[str, Framework] = {}
        for definition in config.get("frameworks", []):
            try:
                framework = self._load_framework(definition)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed framework definition %r: %s", definition, e)
                continue
            if framework is None:
                continue
            frameworks[framework.id] = framework
            for cycle in DependencyIndex(framework.questions).cycles():
                logger.warning("Dependency cycle in %s: %s", framework.id, " -> ".join(cycle))
        logger.info("Loaded %d frameworks from %s", len(frameworks), self.root)
        return frameworks

    def _all(self) -> dict[str, Framework]:
        if self._frameworks is None:
            self._frameworks = self._load()
        return self._frameworks

    def reload(self) -> None:
        self._frameworks = None
        self._indexes.clear()

    # ── Queries ───────────────────────────────────────────────

    def list_frameworks(self, include_disabled: bool = False) -> list[Framework]:
        return [f for f in self._all().values() if include_disabled or f.enabled]

    def get(self, framework_id: str) -> Framework | None:
        """An enabled framework by id."""
        framework = self._all().get(framework_id)
        if framework is None or not framework.enabled:
            return None
        return framework

    def index(self, framework_id: str) -> DependencyIndex | None:
        framework = self.get(framework_id)
        if framework is None:
            return None
        if framework_id not in self._indexes:
            self._indexes[framework_id] = DependencyIndex(framework.questions)
        return self._indexes[framework_id]

    def stats(self, framework_id: str) -> FrameworkStats | None:
        framework = self.get(framework_id)
        if framework is None:
            return None
        questions = framework.questions
        return FrameworkStats(
            total_domains=len(framework.domains),
            total_controls=len(questions),
            level1_controls=sum(1 for q in questions if q.level == 1),
            level2_controls=sum(1 for q in questions if q.level == 2),
            estimated_time=framework.estimated_time,
        )

    def validate(self, framework_id: str) -> list[str]:
        """Missing or unreadable files for a framework definition."""
        try:
            config = _read_json(self.root / self.config_file)
        except (OSError, ValueError) as e:
            return [f"Framework config unreadable: {e}"]
        definition = next(
            (d for d in config.get("frameworks", []) if d.get("id") == framework_id), None
        )
        if definition is None:
            return [f"Framework {framework_id} is not defined"]

        errors: list[str] = []
        base = self._framework_dir(definition)
        manifest_name = definition.get("manifest", "manifest.json")
        try:
            manifest = _read_json(base / manifest_name)
        except (OSError, ValueError):
            return [f"Manifest file not found: {manifest_name}"]
        for ref in manifest.get("domains", []):
            if not (base / ref.get("file", "")).is_file():
                errors.append(f"Domain file not found: {ref.get('file')}")
        return errors
