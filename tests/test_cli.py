"""Tests for the hcpctl command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from hcpcore.cli import cli
from hcpcore.provenance.chain import manifest_file_digest
from hcpcore.provenance.manifest import Manifest

PASSPHRASE = "correct horse"


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path: Path):
    for name in ("HCP_KEY_PATH", "HCP_WORKERS", "HCP_NETWORK"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "README.md").write_text("# Demo\n")
    (root / "app.py").write_text("def main():\n    return 0\n")
    return root


@pytest.fixture
def key_file(runner: CliRunner, tmp_path: Path) -> Path:
    path = tmp_path / "keys" / "identity.key"
    result = runner.invoke(cli, ["keygen", "--key", str(path)], input=f"{PASSPHRASE}\n{PASSPHRASE}\n")
    assert result.exit_code == 0, result.output
    return path


def do_release(runner: CliRunner, project: Path, key_file: Path, *extra: str):
    return runner.invoke(
        cli,
        ["release", "--path", str(project), "--key", str(key_file), *extra],
        input=f"{PASSPHRASE}\n",
    )


class TestInit:
    """Test config initialization."""

    def test_writes_local_config(self, runner: CliRunner, tmp_path: Path):
        """init writes .hcp/config.yaml in the working directory."""
        result = runner.invoke(cli, ["init"])

        assert result.exit_code == 0, result.output
        path = tmp_path / ".hcp" / "config.yaml"
        data = yaml.safe_load(path.read_text())
        assert data["manifest_name"] == "manifest.hcp"
        assert data["identity_key_path"] == str(tmp_path / "home" / ".hcp" / "identity.key")
        assert "Identity Key Path" in result.output

    def test_global_writes_home_config(self, runner: CliRunner, tmp_path: Path):
        """init --global writes under the home directory."""
        result = runner.invoke(cli, ["init", "--global"])

        assert result.exit_code == 0, result.output
        assert (tmp_path / "home" / ".hcp" / "config.yaml").is_file()
        assert not (tmp_path / ".hcp").exists()

    def test_refuses_overwrite(self, runner: CliRunner, tmp_path: Path):
        """An existing config is kept unless --force is given."""
        assert runner.invoke(cli, ["init"]).exit_code == 0
        path = tmp_path / ".hcp" / "config.yaml"
        path.write_text("workers: 4\n")

        result = runner.invoke(cli, ["init"])
        assert result.exit_code != 0
        assert "already exists" in result.output
        assert path.read_text() == "workers: 4\n"

        assert runner.invoke(cli, ["init", "--force"]).exit_code == 0
        assert yaml.safe_load(path.read_text())["workers"] == 1


class TestKeygen:
    """Test key generation."""

    def test_creates_key_file(self, key_file: Path):
        """keygen writes an encrypted key file."""
        assert key_file.is_file()
        assert key_file.read_text().startswith("scrypt:")

    def test_refuses_overwrite(self, runner: CliRunner, key_file: Path):
        """An existing key is kept unless --force is given."""
        before = key_file.read_text()
        result = runner.invoke(cli, ["keygen", "--key", str(key_file)], input="x\nx\n")

        assert result.exit_code != 0
        assert "already exists" in result.output
        assert key_file.read_text() == before

    def test_force_overwrites(self, runner: CliRunner, key_file: Path):
        """--force replaces the key."""
        before = key_file.read_text()
        result = runner.invoke(cli, ["keygen", "--key", str(key_file), "--force"], input="x\nx\n")

        assert result.exit_code == 0, result.output
        assert key_file.read_text() != before


class TestAddress:
    """Test address display."""

    def test_from_public_key(self, runner: CliRunner):
        """A public key alone derives the address."""
        pub = "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        result = runner.invoke(cli, ["address", "--public-key", pub])

        assert result.exit_code == 0, result.output
        assert "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4" in result.output

    def test_from_key_file(self, runner: CliRunner, key_file: Path):
        """The key file address is shown after the passphrase."""
        result = runner.invoke(cli, ["address", "--key", str(key_file)], input=f"{PASSPHRASE}\n")

        assert result.exit_code == 0, result.output
        assert "bc1q" in result.output

    def test_wrong_passphrase(self, runner: CliRunner, key_file: Path):
        """A bad passphrase is an error exit."""
        result = runner.invoke(cli, ["address", "--key", str(key_file)], input="wrong\n")

        assert result.exit_code == 1
        assert "Error:" in result.output


class TestScanAndFingerprint:
    """Test the read-only commands."""

    def test_scan_lists_assets(self, runner: CliRunner, project: Path):
        """scan prints assets and the content hash."""
        result = runner.invoke(cli, ["scan", "--path", str(project)])

        assert result.exit_code == 0, result.output
        assert "README.md" in result.output
        assert "app.py" in result.output
        assert "Total Assets: 2" in result.output

    def test_scan_json(self, runner: CliRunner, project: Path):
        """--json prints the tree digest."""
        result = runner.invoke(cli, ["scan", "--path", str(project), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [a["path"] for a in data["assets"]] == ["README.md", "app.py"]
        assert "logic_hash" in data["assets"][1]

    def test_fingerprint(self, runner: CliRunner, project: Path):
        """fingerprint prints a 64-character hex digest."""
        result = runner.invoke(cli, ["fingerprint", str(project / "app.py")])

        assert result.exit_code == 0, result.output
        assert len(result.output.strip()) == 64

    def test_fingerprint_unsupported(self, runner: CliRunner, project: Path):
        """Unsupported files are refused."""
        result = runner.invoke(cli, ["fingerprint", str(project / "README.md")])
        assert result.exit_code != 0


class TestReleaseAndVerify:
    """Test release then verify."""

    def test_release_writes_signed_manifest(self, runner: CliRunner, project: Path, key_file: Path):
        """release writes manifest.hcp into the released directory."""
        result = do_release(runner, project, key_file)

        assert result.exit_code == 0, result.output
        manifest = Manifest.from_json(project / "manifest.hcp")
        assert manifest.is_signed
        assert manifest.parent_hash is None
        assert [a.path for a in manifest.assets] == ["README.md", "app.py"]

    def test_dry_run_writes_nothing(self, runner: CliRunner, project: Path, key_file: Path):
        """--dry-run previews without asking for a passphrase."""
        result = runner.invoke(cli, ["release", "--path", str(project), "--key", str(key_file), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "DRY RUN" in result.output
        assert not (project / "manifest.hcp").exists()

    def test_tagged_release_links_parent(self, runner: CliRunner, project: Path, key_file: Path):
        """A tagged release links to the current manifest.hcp."""
        assert do_release(runner, project, key_file).exit_code == 0
        parent = manifest_file_digest(project / "manifest.hcp")

        result = do_release(runner, project, key_file, "--tag", "v1.0")

        assert result.exit_code == 0, result.output
        tagged = Manifest.from_json(project / "manifest-v1.0.hcp")
        assert tagged.parent_hash == parent

    def test_missing_key(self, runner: CliRunner, project: Path, tmp_path: Path):
        """Releasing without a key file fails clearly."""
        result = do_release(runner, project, tmp_path / "nope.key")

        assert result.exit_code != 0
        assert "keygen" in result.output

    def test_verify_valid(self, runner: CliRunner, project: Path, key_file: Path):
        """An untouched release verifies strictly."""
        do_release(runner, project, key_file)

        result = runner.invoke(cli, ["verify", "--path", str(project)])

        assert result.exit_code == 0, result.output
        assert "strict_ok" in result.output

    def test_verify_fuzzy(self, runner: CliRunner, project: Path, key_file: Path):
        """Cosmetic edits verify as fuzzy."""
        do_release(runner, project, key_file)
        (project / "app.py").write_text("# entry point\ndef main():\n\n    return 0\n")

        result = runner.invoke(cli, ["verify", "--path", str(project)])

        assert result.exit_code == 0, result.output
        assert "fuzzy_ok" in result.output

    def test_verify_fails_on_logic_change(self, runner: CliRunner, project: Path, key_file: Path, tmp_path: Path):
        """Logic changes exit 1 and reports are written."""
        do_release(runner, project, key_file)
        (project / "app.py").write_text("def main():\n    if True:\n        return 1\n    return 0\n")
        out = tmp_path / "report"

        result = runner.invoke(cli, ["verify", "--path", str(project), "--out", str(out)])

        assert result.exit_code == 1
        assert "app.py" in result.output
        assert json.loads((out / "verification_report.json").read_text())["valid"] is False
        assert (out / "verification_report.md").is_file()

    def test_custom_manifest_name_not_an_asset(self, runner: CliRunner, project: Path, key_file: Path, tmp_path: Path):
        """A configured manifest name is excluded from the next verify."""
        config = tmp_path / "hcp.yaml"
        config.write_text("manifest_name: provenance.json\n")

        released = runner.invoke(
            cli,
            ["--config", str(config), "release", "--path", str(project), "--key", str(key_file)],
            input=f"{PASSPHRASE}\n",
        )
        assert released.exit_code == 0, released.output
        assert (project / "provenance.json").is_file()

        result = runner.invoke(cli, ["--config", str(config), "verify", "--path", str(project)])

        assert result.exit_code == 0, result.output
        assert "strict_ok" in result.output

    def test_verify_missing_manifest(self, runner: CliRunner, project: Path):
        """Verifying without a manifest is an error."""
        result = runner.invoke(cli, ["verify", "--path", str(project)])
        assert result.exit_code != 0
        assert "Manifest not found" in result.output


class TestChain:
    """Test chain display."""

    def test_chain_depth(self, runner: CliRunner, project: Path, key_file: Path):
        """chain walks back through the tagged releases."""
        do_release(runner, project, key_file)
        do_release(runner, project, key_file, "--tag", "v2")

        result = runner.invoke(cli, ["chain", "--manifest", str(project / "manifest-v2.hcp")])

        assert result.exit_code == 0, result.output
        assert "Chain depth: 1" in result.output
        assert manifest_file_digest(project / "manifest.hcp") in result.output


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
