"""Shared fixtures: a small two-domain framework on disk plus store/service."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gapcheck.config import AssessmentConfig
from gapcheck.frameworks import FrameworkCatalog
from gapcheck.models import Client
from gapcheck.service import AssessmentService
from gapcheck.store import EntityStore

FRAMEWORK_ID = "cmmc-l1"

# AC-1 drives every cascade rule; IA-1 is a second enabler of AC-4.
DOMAINS = [
    {
        "id": "AC",
        "file": "ac.json",
        "title": "Access Control",
        "questions": [
            {
                "id": "AC-1",
                "control": "AC.L1-3.1.1",
                "dependencies": {
                    "autoFail": ["AC-2"],
                    "skipIfNo": ["AC-3"],
                    "skipIfNA": ["AC-5"],
                    "enables": ["AC-4"],
                },
            },
            {"id": "AC-2", "control": "AC.L1-3.1.2"},
            {"id": "AC-3", "control": "AC.L1-3.1.20"},
            {"id": "AC-4", "control": "AC.L1-3.1.22"},
            {"id": "AC-5", "control": "AC.L2-3.1.3", "level": 2},
        ],
    },
    {
        "id": "IA",
        "file": "ia.json",
        "title": "Identification and Authentication",
        "questions": [
            {"id": "IA-1", "control": "IA.L1-3.5.1", "dependencies": {"enables": ["AC-4"]}},
            {"id": "IA-2", "control": "IA.L1-3.5.2", "dependencies": {"requires": ["AC-1"]}},
            {"id": "IA-3", "control": "IA.L2-3.5.3", "level": 2},
            {"id": "IA-4", "control": "IA.L2-3.5.4", "level": 2},
            {"id": "IA-5", "control": "IA.L2-3.5.5", "level": 2},
        ],
    },
]


def write_framework(root: Path, framework_id: str = FRAMEWORK_ID, domains=None, enabled=True) -> Path:
    """Write config.json, a manifest and one file per domain under ``root``."""
    domains = DOMAINS if domains is None else domains
    fw_dir = root / framework_id
    fw_dir.mkdir(parents=True, exist_ok=True)

    config_path = root / "config.json"
    config = json.loads(config_path.read_text()) if config_path.exists() else {"frameworks": []}
    config["frameworks"].append(
        {
            "id": framework_id,
            "name": f"Test {framework_id}",
            "path": f"/{framework_id}/",
            "manifest": "manifest.json",
            "enabled": enabled,
        }
    )
    config_path.write_text(json.dumps(config))

    manifest = {
        "domains": [{"id": d["id"], "name": d["title"], "file": d["file"]} for d in domains],
        "totalControls": sum(len(d["questions"]) for d in domains),
        "estimatedTime": 45,
    }
    (fw_dir / "manifest.json").write_text(json.dumps(manifest))
    for d in domains:
        (fw_dir / d["file"]).write_text(
            json.dumps({"domain": d["id"], "title": d["title"], "level": 1, "questions": d["questions"]})
        )
    return root


@pytest.fixture
def frameworks_dir(tmp_path: Path) -> Path:
    return write_framework(tmp_path / "frameworks")


@pytest.fixture
def catalog(frameworks_dir: Path) -> FrameworkCatalog:
    return FrameworkCatalog(frameworks_dir)


@pytest.fixture
def store(tmp_path: Path) -> EntityStore:
    return EntityStore(tmp_path / "data")


@pytest.fixture
def service(store: EntityStore, catalog: FrameworkCatalog) -> AssessmentService:
    return AssessmentService(store, catalog, AssessmentConfig())


@pytest.fixture
def acme() -> Client:
    return Client(id="client-acme", company_name="Acme Defense", industry="Manufacturing")
