"""Configuration for the hcpctl tool.

Precedence, lowest first:
1. Defaults
2. YAML file (./.hcp/config.yaml, else ~/.hcp/config.yaml)
3. Environment variables:
     HCP_KEY_PATH: Identity key file
     HCP_WORKERS: Hashing threads
     HCP_NETWORK: Address network (mainnet/testnet/regtest)
4. Explicit overrides (CLI flags)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from hcpcore.ignore import DEFAULT_IGNORE_FILE
from hcpcore.security import DEFAULT_MAX_FILE_SIZE

CONFIG_DIR_NAME = ".hcp"
CONFIG_FILE_NAME = "config.yaml"


def _default_key_path() -> str:
    return str(Path.home() / CONFIG_DIR_NAME / "identity.key")


@dataclass
class HcpConfig:
    """Tool settings."""

    identity_key_path: str = field(default_factory=_default_key_path)
    manifest_name: str = "manifest.hcp"
    ignore_file: str = DEFAULT_IGNORE_FILE
    workers: int = 1
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    network: str = "mainnet"

    def __post_init__(self):
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.max_file_size < 1:
            raise ValueError(f"max_file_size must be >= 1, got {self.max_file_size}")

    @property
    def key_path(self) -> Path:
        return Path(self.identity_key_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HcpConfig:
        """Create from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def apply_env(self) -> HcpConfig:
        """Apply environment overrides in place."""
        if key_path := os.getenv("HCP_KEY_PATH"):
            self.identity_key_path = key_path
        if workers := os.getenv("HCP_WORKERS"):
            self.workers = int(workers)
        if network := os.getenv("HCP_NETWORK"):
            self.network = network
        self.__post_init__()
        return self

    @staticmethod
    def find_config_file(cwd: Path | None = None) -> Path | None:
        """Local config first, then the home directory."""
        local = (cwd or Path.cwd()) / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if local.is_file():
            return local
        home = Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if home.is_file():
            return home
        return None

    @classmethod
    def from_file(cls, path: Path) -> HcpConfig:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")
        return cls.from_dict(data)

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        cwd: Path | None = None,
        **overrides: Any,
    ) -> HcpConfig:
        """Resolve configuration from every source.

        Args:
            config_path: Explicit config file (skips the search)
            cwd: Directory to search for a local config
            **overrides: Values that win over everything else; None is skipped
        """
        path = config_path or cls.find_config_file(cwd)
        config = cls.from_file(path) if path else cls()
        config.apply_env()

        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"Unknown config option: {key}")
            if value is not None:
                setattr(config, key, value)
        config.__post_init__()

        config.identity_key_path = str(Path(config.identity_key_path).expanduser().absolute())
        return config

    def save(self, path: Path) -> None:
        """Write configuration as YAML."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=True)
