"""Tests for dual hashing and the global content hash."""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from hcpcore.fingerprint import FingerprinterRegistry, default_registry
from hcpcore.ignore import IgnoreMatcher
from hcpcore.provenance.hashing import (
    Asset,
    DualHasher,
    aggregate_content_hash,
    digest_tree,
    hash_file,
)
from hcpcore.scanner import ScanError

HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
WORLD_SHA256 = hashlib.sha256(b"world").hexdigest()


class TestAsset:
    """Test the Asset record."""

    def test_payload_field_order(self):
        """Wire order is path, raw_hash, logic_hash."""
        asset = Asset("a.py", "1" * 64, "2" * 64)
        assert list(asset.to_payload()) == ["path", "raw_hash", "logic_hash"]

    def test_empty_logic_hash_omitted(self):
        """Assets without a fingerprint carry no logic_hash key."""
        assert Asset("a.txt", "1" * 64).to_dict() == {"path": "a.txt", "raw_hash": "1" * 64}

    def test_roundtrip_dict(self):
        """from_dict restores an asset; empty logic hashes become None."""
        asset = Asset("a.py", "1" * 64, "2" * 64)
        assert Asset.from_dict(asset.to_dict()) == asset
        assert Asset.from_dict({"path": "x", "raw_hash": "1" * 64, "logic_hash": ""}).logic_hash is None


class TestHashFile:
    """Test raw content hashing."""

    def test_known_digest(self, tmp_path: Path):
        """The raw hash is plain SHA-256 of the bytes."""
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert hash_file(path) == HELLO_SHA256

    def test_large_file_streamed(self, tmp_path: Path):
        """Files larger than one chunk hash like the whole byte string."""
        data = bytes(range(256)) * 100
        path = tmp_path / "blob.bin"
        path.write_bytes(data)
        assert hash_file(path) == hashlib.sha256(data).hexdigest()


class TestAggregateContentHash:
    """Test the global content hash."""

    def test_concatenates_path_and_hash(self):
        """Each asset contributes path bytes then hex raw hash, no delimiters."""
        assets = [Asset("a.txt", HELLO_SHA256), Asset("b.txt", WORLD_SHA256)]
        expected = hashlib.sha256(
            b"a.txt" + HELLO_SHA256.encode() + b"b.txt" + WORLD_SHA256.encode()
        ).hexdigest()
        assert aggregate_content_hash(assets) == expected

    def test_empty_tree(self):
        """No assets hash to the digest of the empty string."""
        assert aggregate_content_hash([]) == hashlib.sha256(b"").hexdigest()

    def test_logic_hash_never_included(self):
        """Only (path, raw_hash) pairs enter the content hash."""
        plain = [Asset("m.py", HELLO_SHA256)]
        with_logic = [Asset("m.py", HELLO_SHA256, WORLD_SHA256)]
        assert aggregate_content_hash(plain) == aggregate_content_hash(with_logic)

    def test_raw_hash_lowercased(self):
        """Uppercase hex input aggregates like lowercase."""
        assert aggregate_content_hash([Asset("a", HELLO_SHA256.upper())]) == (
            aggregate_content_hash([Asset("a", HELLO_SHA256)])
        )

    def test_unsorted_rejected(self):
        """Out-of-order assets are a caller error."""
        with pytest.raises(ValueError):
            aggregate_content_hash([Asset("b", HELLO_SHA256), Asset("a", WORLD_SHA256)])

    def test_duplicate_paths_rejected(self):
        """Paths must be unique."""
        with pytest.raises(ValueError):
            aggregate_content_hash([Asset("a", HELLO_SHA256), Asset("a", WORLD_SHA256)])


class TestDualHasher:
    """Test per-file dual hashing."""

    def test_source_file_gets_logic_hash(self, tmp_path: Path):
        """Supported sources carry both hashes."""
        path = tmp_path / "mod.py"
        path.write_text("def f():\n    return 1\n")

        asset = DualHasher().hash_asset("mod.py", path)

        assert asset.raw_hash == hash_file(path)
        assert asset.logic_hash is not None
        assert len(asset.logic_hash) == 64

    def test_other_file_has_no_logic_hash(self, tmp_path: Path):
        """Unsupported files only get a raw hash."""
        path = tmp_path / "a.txt"
        path.write_bytes(b"hello")
        assert DualHasher().hash_asset("a.txt", path) == Asset("a.txt", HELLO_SHA256)

    def test_parse_failure_swallowed(self, tmp_path: Path):
        """A malformed source still gets its raw hash."""
        path = tmp_path / "broken.py"
        path.write_text("def (:\n")

        asset = DualHasher().hash_asset("broken.py", path)

        assert asset.raw_hash == hash_file(path)
        assert asset.logic_hash is None

    def test_empty_registry(self, tmp_path: Path):
        """With no strategies registered nothing is fingerprinted."""
        path = tmp_path / "mod.py"
        path.write_text("x = 1\n")
        assert DualHasher(FingerprinterRegistry()).hash_asset("mod.py", path).logic_hash is None

    def test_read_failure_reported(self, tmp_path: Path):
        """Unreadable files become failures and hashing continues."""
        (tmp_path / "a.txt").write_bytes(b"hello")
        entries = [("a.txt", tmp_path / "a.txt"), ("gone.txt", tmp_path / "gone.txt")]

        assets, failures = DualHasher().hash_files(entries)

        assert [a.path for a in assets] == ["a.txt"]
        assert [f.path for f in failures] == ["gone.txt"]

    def test_parallel_matches_serial(self, tmp_path: Path):
        """Thread-pool hashing yields the same sorted assets."""
        entries = []
        for i in range(20):
            name = f"f{i:02d}.py" if i % 2 else f"f{i:02d}.txt"
            (tmp_path / name).write_text(f"def f{i}():\n    return {i}\n")
            entries.append((name, tmp_path / name))
        entries.reverse()

        serial, _ = DualHasher().hash_files(entries, workers=1)
        parallel, _ = DualHasher().hash_files(entries, workers=4)

        assert serial == parallel
        assert [a.path for a in serial] == sorted(name for name, _ in entries)

    def test_cancel_raises_scan_error(self, tmp_path: Path):
        """A set cancel event stops hashing with ScanError."""
        (tmp_path / "a.txt").write_bytes(b"a")
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ScanError) as exc_info:
            DualHasher().hash_files([("a.txt", tmp_path / "a.txt")], workers=2, cancel=cancel)
        assert exc_info.value.processed == 0


class TestDigestTree:
    """Test scanning plus hashing of a whole tree."""

    def test_two_file_tree(self, tmp_path: Path):
        """The content hash of {a.txt: hello, b.txt: world} is the documented fold."""
        (tmp_path / "a.txt").write_bytes(b"hello")
        (tmp_path / "b.txt").write_bytes(b"world")

        digest = digest_tree(tmp_path)

        assert [a.path for a in digest.assets] == ["a.txt", "b.txt"]
        assert digest.assets[0].raw_hash == HELLO_SHA256
        assert digest.content_hash == aggregate_content_hash(
            [Asset("a.txt", HELLO_SHA256), Asset("b.txt", WORLD_SHA256)]
        )

    def test_ignored_files_do_not_affect_hash(self, tmp_path: Path):
        """Manifests, hidden files and ignored directories are excluded."""
        (tmp_path / "a.txt").write_bytes(b"hello")
        before = digest_tree(tmp_path).content_hash

        (tmp_path / "manifest.hcp").write_text("{}")
        (tmp_path / ".env").write_text("X=1")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "x.js").write_text("")

        assert digest_tree(tmp_path).content_hash == before

    def test_custom_matcher(self, tmp_path: Path):
        """User patterns remove files from the digest."""
        (tmp_path / "a.txt").write_bytes(b"hello")
        (tmp_path / "debug.log").write_bytes(b"noise")

        digest = digest_tree(tmp_path, matcher=IgnoreMatcher(["*.log"]))

        assert [a.path for a in digest.assets] == ["a.txt"]

    def test_reformatting_changes_content_hash_only(self, tmp_path: Path):
        """Cosmetic edits change raw hashes but keep logic hashes."""
        path = tmp_path / "mod.py"
        path.write_text("def f(x):\n    return x\n")
        first = digest_tree(tmp_path, hasher=DualHasher(default_registry()))

        path.write_text("def f(x):  # identity\n\n    return x\n")
        second = digest_tree(tmp_path, hasher=DualHasher(default_registry()))

        assert first.content_hash != second.content_hash
        assert first.assets[0].logic_hash == second.assets[0].logic_hash

    def test_to_dict(self, tmp_path: Path):
        """TreeDigest serializes its parts."""
        (tmp_path / "a.txt").write_bytes(b"hello")
        data = digest_tree(tmp_path).to_dict()
        assert data["assets"] == [{"path": "a.txt", "raw_hash": HELLO_SHA256}]
        assert data["failures"] == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
