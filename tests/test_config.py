"""Tests for configuration loading."""

import pytest
from pathlib import Path

from gapcheck.config import load_config

_ENV_KEYS = [
    "DATA_PATH",
    "GAPCHECK_FRAMEWORKS_DIR",
    "GAPCHECK_STRICT_DEPENDENCIES",
    "GAPCHECK_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self):
        config = load_config()
        assert config.storage.data_path == Path("./data")
        assert config.frameworks.root == Path("./frameworks")
        assert config.assessment.block_on_dependency_errors is False
        assert config.assessment.default_mode == "detailed"
        assert config.log_level == "INFO"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DATA_PATH", "/srv/gap-data")
        monkeypatch.setenv("GAPCHECK_STRICT_DEPENDENCIES", "true")

        config = load_config()
        assert config.storage.data_path == Path("/srv/gap-data")
        assert config.assessment.block_on_dependency_errors is True

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "gapcheck.toml"
        toml_path.write_text("""
log_level = "DEBUG"

[storage]
data_path = "/var/lib/gapcheck"

[frameworks]
root = "/opt/frameworks"

[assessment]
block_on_dependency_errors = true
default_mode = "quick"
""")
        config = load_config(toml_path)
        assert config.storage.data_path == Path("/var/lib/gapcheck")
        assert config.frameworks.root == Path("/opt/frameworks")
        assert config.assessment.block_on_dependency_errors is True
        assert config.assessment.default_mode == "quick"
        assert config.log_level == "DEBUG"

    def test_toml_discovered_in_cwd(self, tmp_path: Path):
        (tmp_path / "gapcheck.toml").write_text('[storage]\ndata_path = "found-in-cwd"\n')
        config = load_config()
        assert config.storage.data_path == Path("found-in-cwd")

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("DATA_PATH", "from-env")

        toml_path = tmp_path / "gapcheck.toml"
        toml_path.write_text('[storage]\ndata_path = "from-toml"\n')
        config = load_config(toml_path)
        assert config.storage.data_path == Path("from-env")  # env wins
