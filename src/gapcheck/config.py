"""Configuration loading from environment variables and gapcheck.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_PATH = Path("./data")
_DEFAULT_FRAMEWORKS_DIR = Path("./frameworks")
_CONFIG_FILENAME = "gapcheck.toml"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class StorageConfig:
    """Where client profiles and assessment sessions are persisted."""

    data_path: Path = _DEFAULT_DATA_PATH


@dataclass
class FrameworkConfig:
    """Read-only framework/question content."""

    root: Path = _DEFAULT_FRAMEWORKS_DIR
    config_file: str = "config.json"


@dataclass
class AssessmentConfig:
    """Answer submission behaviour."""

    block_on_dependency_errors: bool = False
    default_mode: str = "detailed"


@dataclass
class GapcheckConfig:
    """Top-level gapcheck configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    frameworks: FrameworkConfig = field(default_factory=FrameworkConfig)
    assessment: AssessmentConfig = field(default_factory=AssessmentConfig)
    log_level: str = "INFO"


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def load_config(config_path: Path | None = None) -> GapcheckConfig:
    """Load configuration from environment variables and optional gapcheck.toml.

    Priority: environment variables > gapcheck.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.gapcheck/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".gapcheck" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})
    frameworks_data = file_data.get("frameworks", {})
    assessment_data = file_data.get("assessment", {})

    config = GapcheckConfig(
        storage=StorageConfig(
            data_path=Path(
                os.getenv("DATA_PATH", storage_data.get("data_path", str(_DEFAULT_DATA_PATH)))
            ),
        ),
        frameworks=FrameworkConfig(
            root=Path(
                os.getenv(
                    "GAPCHECK_FRAMEWORKS_DIR",
                    frameworks_data.get("root", str(_DEFAULT_FRAMEWORKS_DIR)),
                )
            ),
            config_file=frameworks_data.get("config_file", "config.json"),
        ),
        assessment=AssessmentConfig(
            block_on_dependency_errors=_as_bool(
                os.getenv(
                    "GAPCHECK_STRICT_DEPENDENCIES",
                    assessment_data.get("block_on_dependency_errors", False),
                )
            ),
            default_mode=assessment_data.get("default_mode", "detailed"),
        ),
        log_level=os.getenv("GAPCHECK_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
