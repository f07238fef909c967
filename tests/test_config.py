"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from hcpcore.config import HcpConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    for name in ("HCP_KEY_PATH", "HCP_WORKERS", "HCP_NETWORK"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


class TestHcpConfig:
    """Test HcpConfig."""

    def test_defaults(self):
        """Defaults need no file."""
        config = HcpConfig()
        assert config.manifest_name == "manifest.hcp"
        assert config.ignore_file == ".hcpignore"
        assert config.workers == 1
        assert config.network == "mainnet"
        assert config.key_path.name == "identity.key"

    def test_validation(self):
        """Nonsense values are rejected."""
        with pytest.raises(ValueError):
            HcpConfig(workers=0)
        with pytest.raises(ValueError):
            HcpConfig(max_file_size=0)

    def test_from_dict_ignores_unknown(self):
        """Unknown keys in a file are ignored."""
        config = HcpConfig.from_dict({"workers": 3, "color": "blue"})
        assert config.workers == 3

    def test_yaml_roundtrip(self, tmp_path: Path):
        """save writes YAML that from_file reads back."""
        path = tmp_path / "config.yaml"
        HcpConfig(workers=4, network="testnet").save(path)

        assert yaml.safe_load(path.read_text())["workers"] == 4
        assert HcpConfig.from_file(path) == HcpConfig(workers=4, network="testnet")

    def test_non_mapping_file(self, tmp_path: Path):
        """A YAML list is not a config."""
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            HcpConfig.from_file(path)

    def test_local_file_found(self, tmp_path: Path):
        """./.hcp/config.yaml is picked up from the working directory."""
        local = tmp_path / "repo" / ".hcp" / "config.yaml"
        local.parent.mkdir(parents=True)
        local.write_text("workers: 2\n")

        assert HcpConfig.find_config_file(tmp_path / "repo") == local
        assert HcpConfig.load(cwd=tmp_path / "repo").workers == 2

    def test_home_file_fallback(self, tmp_path: Path):
        """~/.hcp/config.yaml is used when no local file exists."""
        home = tmp_path / "home" / ".hcp" / "config.yaml"
        home.parent.mkdir(parents=True)
        home.write_text("network: regtest\n")

        assert HcpConfig.load(cwd=tmp_path).network == "regtest"

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch):
        """Environment variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("workers: 2\nnetwork: testnet\n")
        monkeypatch.setenv("HCP_WORKERS", "8")
        monkeypatch.setenv("HCP_KEY_PATH", str(tmp_path / "env.key"))

        config = HcpConfig.load(config_path=path)

        assert config.workers == 8
        assert config.network == "testnet"
        assert config.key_path == tmp_path / "env.key"

    def test_overrides_win(self, tmp_path: Path, monkeypatch):
        """Explicit overrides beat env; None overrides are skipped."""
        monkeypatch.setenv("HCP_WORKERS", "8")

        config = HcpConfig.load(cwd=tmp_path, workers=3, network=None)

        assert config.workers == 3
        assert config.network == "mainnet"

    def test_unknown_override(self, tmp_path: Path):
        """Overrides must name a real option."""
        with pytest.raises(TypeError):
            HcpConfig.load(cwd=tmp_path, colour="red")

    def test_key_path_made_absolute(self, tmp_path: Path):
        """Relative key paths are resolved against the working directory."""
        config = HcpConfig.load(cwd=tmp_path, identity_key_path="keys/id.key")
        assert config.key_path.is_absolute()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
