"""Manifest verification: authorship and two-tier content integrity.

Authorship has two independent checks, reported separately:
- identity: the public key's derived address equals the claimed author
- signature: the stored signature covers the canonical payload

Content verification ends in one of three tiers:
- STRICT_OK: the recomputed content hash equals the manifest's
- FUZZY_OK: it does not, but every logic fingerprint on either side
  matches and at least one was compared
- FAIL: anything else, with the diverging paths
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from hcpcore.identity import Identity, Secp256k1Identity, public_key_from_hex
from hcpcore.ignore import IgnoreMatcher
from hcpcore.provenance.hashing import DualHasher, TreeDigest, digest_tree
from hcpcore.provenance.manifest import Manifest
from hcpcore.scanner import FileFailure, path_sort_key
from hcpcore.security import SecurityLimits

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """Error during verification."""
    pass


class SignatureInvalid(VerificationError):
    """The signature does not cover this manifest under the given key."""
    pass


class IdentityMismatch(VerificationError):
    """The public key does not derive the manifest's claimed author."""
    pass


class AuthorshipStatus(str, Enum):
    OK = "ok"
    IDENTITY_MISMATCH = "identity_mismatch"
    SIGNATURE_INVALID = "signature_invalid"


class Tier(str, Enum):
    STRICT_OK = "strict_ok"
    FUZZY_OK = "fuzzy_ok"
    FAIL = "fail"


class DivergenceReason(str, Enum):
    MISSING = "missing"
    NEW = "new"
    LOGIC_CHANGED = "logic-changed"
    CONTENT_CHANGED = "content-changed"


@dataclass
class AuthorshipResult:
    """Outcome of the identity and signature checks."""

    identity_valid: bool
    signature_valid: bool
    claimed_author: str
    derived_address: str
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> AuthorshipStatus:
        if not self.identity_valid:
            return AuthorshipStatus.IDENTITY_MISMATCH
        if not self.signature_valid:
            return AuthorshipStatus.SIGNATURE_INVALID
        return AuthorshipStatus.OK

    @property
    def valid(self) -> bool:
        return self.status is AuthorshipStatus.OK

    def raise_for_status(self) -> None:
        """Raise IdentityMismatch or SignatureInvalid for a failed check."""
        if not self.identity_valid:
            raise IdentityMismatch(
                f"Public key derives {self.derived_address}, manifest claims {self.claimed_author}"
            )
        if not self.signature_valid:
            raise SignatureInvalid("; ".join(self.errors) or "Signature verification failed")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "identity_valid": self.identity_valid,
            "signature_valid": self.signature_valid,
            "claimed_author": self.claimed_author,
            "derived_address": self.derived_address,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class Divergence:
    """One path that differs between the manifest and the tree."""

    path: str
    reason: DivergenceReason
    expected: str | None = None
    actual: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "reason": self.reason.value,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass
class ContentVerdict:
    """Outcome of content verification.

    ``divergences`` are the logic-level differences that decide the tier.
    ``unchecked_changes`` lists raw-level differences of files without a
    logic fingerprint; the fuzzy tier does not look at them, so they never
    change the tier.
    """

    tier: Tier
    expected_hash: str
    actual_hash: str
    logic_compared: int = 0
    divergences: list[Divergence] = field(default_factory=list)
    unchecked_changes: list[Divergence] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.tier is not Tier.FAIL

    @property
    def diverging_paths(self) -> list[str]:
        """Every reported path, logic-level first."""
        return [d.path for d in (*self.divergences, *self.unchecked_changes)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "expected_hash": self.expected_hash,
            "actual_hash": self.actual_hash,
            "logic_compared": self.logic_compared,
            "divergences": [d.to_dict() for d in self.divergences],
            "unchecked_changes": [d.to_dict() for d in self.unchecked_changes],
            "failures": [f.to_dict() for f in self.failures],
        }


def compare_content(manifest: Manifest, digest: TreeDigest) -> ContentVerdict:
    """Decide the content tier for a freshly computed tree digest."""
    verdict = ContentVerdict(
        tier=Tier.FAIL,
        expected_hash=manifest.content_hash,
        actual_hash=digest.content_hash,
        failures=list(digest.failures),
    )
    if digest.content_hash == manifest.content_hash:
        verdict.tier = Tier.STRICT_OK
        return verdict

    recorded = manifest.asset_map
    current = digest.asset_map

    for asset in digest.assets:
        if not asset.logic_hash:
            continue
        old = recorded.get(asset.path)
        if old is None:
            verdict.divergences.append(
                Divergence(asset.path, DivergenceReason.NEW, None, asset.logic_hash)
            )
        elif old.logic_hash != asset.logic_hash:
            if old.logic_hash:
                verdict.logic_compared += 1
            verdict.divergences.append(
                Divergence(asset.path, DivergenceReason.LOGIC_CHANGED, old.logic_hash, asset.logic_hash)
            )
        else:
            verdict.logic_compared += 1

    for old in manifest.assets:
        if not old.logic_hash:
            continue
        asset = current.get(old.path)
        if asset is None:
            verdict.divergences.append(
                Divergence(old.path, DivergenceReason.MISSING, old.logic_hash, None)
            )
        elif not asset.logic_hash:
            verdict.divergences.append(
                Divergence(old.path, DivergenceReason.LOGIC_CHANGED, old.logic_hash, None)
            )

    for path in sorted(recorded.keys() | current.keys(), key=path_sort_key):
        old, asset = recorded.get(path), current.get(path)
        if (old is not None and old.logic_hash) or (asset is not None and asset.logic_hash):
            continue
        if asset is None:
            change = Divergence(path, DivergenceReason.MISSING, old.raw_hash, None)
        elif old is None:
            change = Divergence(path, DivergenceReason.NEW, None, asset.raw_hash)
        elif old.raw_hash != asset.raw_hash:
            change = Divergence(path, DivergenceReason.CONTENT_CHANGED, old.raw_hash, asset.raw_hash)
        else:
            continue
        verdict.unchecked_changes.append(change)

    verdict.divergences.sort(key=lambda d: path_sort_key(d.path))
    if verdict.logic_compared > 0 and not verdict.divergences:
        verdict.tier = Tier.FUZZY_OK

    return verdict


@dataclass
class ReleaseVerification:
    """Combined authorship and content result for one manifest."""

    manifest_path: str | None
    authorship: AuthorshipResult
    content: ContentVerdict
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def valid(self) -> bool:
        return self.authorship.valid and self.content.ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "manifest_path": self.manifest_path,
            "authorship": self.authorship.to_dict(),
            "content": self.content.to_dict(),
            "timestamp": self.timestamp,
        }

    def write_json(self, path: Path) -> None:
        """Write to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, sort_keys=True)

    def write_markdown(self, path: Path) -> None:
        """Write to Markdown file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self._generate_markdown())

    def _generate_markdown(self) -> str:
        authorship = self.authorship
        content = self.content
        lines = [
            "# Manifest Verification Report",
            "",
            f"**Status:** {'✅ VALID' if self.valid else '❌ INVALID'}",
            f"**Timestamp:** {self.timestamp}",
        ]
        if self.manifest_path:
            lines.append(f"**Manifest:** `{self.manifest_path}`")

        lines.extend([
            "",
            "## Authorship",
            "",
            f"- **Claimed Author:** `{authorship.claimed_author}`",
            f"- **Identity:** {'✅ Verified' if authorship.identity_valid else '❌ Mismatch'}",
            f"- **Signature:** {'✅ Valid' if authorship.signature_valid else '❌ Invalid'}",
            "",
            "## Content",
            "",
            f"- **Tier:** {content.tier.value}",
            f"- **Expected Hash:** `{content.expected_hash}`",
            f"- **Actual Hash:** `{content.actual_hash}`",
            f"- **Logic Fingerprints Compared:** {content.logic_compared}",
            "",
        ])

        if content.divergences:
            lines.extend(["## Diverging Source Files", ""])
            for item in content.divergences:
                lines.append(f"- `{item.path}` ({item.reason.value})")
            lines.append("")

        if content.unchecked_changes:
            lines.extend(["## Changed Files Without Logic Fingerprint", ""])
            for item in content.unchecked_changes:
                lines.append(f"- `{item.path}` ({item.reason.value})")
            lines.append("")

        if content.failures:
            lines.extend(["## Unreadable Files", ""])
            for failure in content.failures:
                lines.append(f"- `{failure.path}`: {failure.reason}")
            lines.append("")

        if authorship.errors:
            lines.extend(["## Errors", ""])
            for error in authorship.errors:
                lines.append(f"- {error}")
            lines.append("")

        return "\n".join(lines)


class VerificationEngine:
    """Checks manifests against a public key and a directory tree."""

    def __init__(
        self,
        identity: Identity | None = None,
        matcher: IgnoreMatcher | None = None,
        hasher: DualHasher | None = None,
        limits: SecurityLimits | None = None,
        workers: int = 1,
    ) -> None:
        self.identity = identity or Secp256k1Identity()
        self.matcher = matcher
        self.hasher = hasher
        self.limits = limits
        self.workers = workers

    def verify_authorship(
        self,
        manifest: Manifest,
        public_key: bytes | str | None = None,
    ) -> AuthorshipResult:
        """Check identity binding and signature.

        Args:
            manifest: Manifest under test
            public_key: Key to check against (default: the manifest's own
                public_key field), as bytes or hex

        Raises:
            CryptoError: If the public key is not a valid secp256k1 point
        """
        if public_key is None:
            public_key = manifest.public_key
        key = public_key_from_hex(public_key) if isinstance(public_key, str) else public_key

        derived = self.identity.derive_address(key)
        result = AuthorshipResult(
            identity_valid=derived == manifest.author,
            signature_valid=False,
            claimed_author=manifest.author,
            derived_address=derived,
        )
        if not result.identity_valid:
            result.errors.append(f"Public key derives {derived}, not {manifest.author}")

        if not manifest.signature:
            result.errors.append("Manifest is not signed")
            return result

        try:
            signature = bytes.fromhex(manifest.signature)
        except ValueError:
            result.errors.append("Signature is not valid hex")
            return result

        result.signature_valid = self.identity.verify(manifest.payload_digest(), signature, key)
        if not result.signature_valid:
            result.errors.append("Signature verification failed")

        logger.info("Authorship for %s: %s", manifest.author, result.status.value)
        return result

    def verify_content(self, manifest: Manifest, root: Path) -> ContentVerdict:
        """Recompute the tree digest under root and compare.

        Raises:
            ScanError: If the tree cannot be scanned
        """
        digest = digest_tree(
            root,
            matcher=self.matcher,
            hasher=self.hasher,
            limits=self.limits,
            workers=self.workers,
        )
        verdict = compare_content(manifest, digest)
        logger.info(
            "Content of %s: %s (%d divergences)",
            root, verdict.tier.value, len(verdict.divergences),
        )
        return verdict

    def verify(
        self,
        manifest: Manifest,
        root: Path,
        public_key: bytes | str | None = None,
        manifest_path: Path | None = None,
    ) -> ReleaseVerification:
        """Run authorship and content verification together."""
        return ReleaseVerification(
            manifest_path=str(manifest_path) if manifest_path else None,
            authorship=self.verify_authorship(manifest, public_key),
            content=self.verify_content(manifest, root),
        )

    def verify_file(
        self,
        manifest_path: Path,
        root: Path | None = None,
        public_key: bytes | str | None = None,
    ) -> ReleaseVerification:
        """Load a manifest file and verify it against root.

        The root defaults to the manifest's directory.
        """
        manifest = Manifest.from_json(manifest_path, self.limits)
        return self.verify(
            manifest,
            root if root is not None else manifest_path.parent,
            public_key=public_key,
            manifest_path=manifest_path,
        )
