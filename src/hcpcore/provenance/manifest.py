"""Provenance manifest model, builder and persisted form."""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from hcpcore.canonical import OrderedObject, canonical_payload_bytes, pretty_json
from hcpcore.provenance.collaborators import (
    CognitiveProofProvider,
    ContributionMetric,
    ContributionProvider,
)
from hcpcore.provenance.hashing import Asset, TreeDigest
from hcpcore.scanner import path_sort_key
from hcpcore.security import SecurityLimits, safe_load_json

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "v1-release"
DEFAULT_MANIFEST_NAME = "manifest.hcp"

_DIGEST = {"type": "string", "pattern": "^[0-9a-f]{64}$"}
_HEX = {"type": "string", "pattern": "^[0-9a-fA-F]*$"}

MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "HCP provenance manifest",
    "type": "object",
    "required": ["version", "author", "public_key", "content_hash", "timestamp", "entropy_dna"],
    "additionalProperties": False,
    "properties": {
        "version": {"type": "string"},
        "author": {"type": "string"},
        "public_key": _HEX,
        "content_hash": _DIGEST,
        "parent_hash": _DIGEST,
        "timestamp": {"type": "integer", "minimum": -(2**63), "maximum": 2**63 - 1},
        "entropy_dna": {"type": "string"},
        "assets": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["path", "raw_hash"],
                "additionalProperties": False,
                "properties": {
                    "path": {"type": "string", "minLength": 1},
                    "raw_hash": _DIGEST,
                    "logic_hash": _DIGEST,
                },
            },
        },
        "contribution_map": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["commits", "aha_score"],
                "properties": {
                    "commits": {"type": "integer"},
                    "aha_score": {"type": "number"},
                },
            },
        },
        "cognitive_proofs": {
            "type": "object",
            "additionalProperties": {"type": "object"},
        },
        "signature": _HEX,
    },
}

_validator = Draft202012Validator(MANIFEST_SCHEMA)


class ManifestFormatError(Exception):
    """Manifest document does not match the manifest schema."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


def _ordered(value: Any) -> Any:
    """Freeze caller key order of an opaque blob for canonical encoding."""
    if isinstance(value, Mapping):
        return OrderedObject((str(k), _ordered(v)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return [_ordered(item) for item in value]
    return value


def validate_manifest_dict(data: Any) -> None:
    """Validate a parsed manifest document.

    Raises:
        ManifestFormatError: Listing every schema violation
    """
    errors = sorted(
        f"{'/'.join(str(p) for p in error.absolute_path) or '<root>'}: {error.message}"
        for error in _validator.iter_errors(data)
    )
    if errors:
        raise ManifestFormatError(f"Invalid manifest ({len(errors)} errors)", errors)


@dataclass
class Manifest:
    """Signed statement of who authored a tree and what it contains."""

    version: str = MANIFEST_VERSION
    author: str = ""
    public_key: str = ""
    content_hash: str = ""
    parent_hash: str | None = None
    timestamp: int = 0
    entropy_dna: str = ""
    assets: list[Asset] = field(default_factory=list)
    contribution_map: dict[str, ContributionMetric] = field(default_factory=dict)
    cognitive_proofs: dict[str, Any] = field(default_factory=dict)
    signature: str = ""

    @property
    def asset_map(self) -> dict[str, Asset]:
        return {asset.path: asset for asset in self.assets}

    @property
    def is_signed(self) -> bool:
        return bool(self.signature)

    def signable_payload(self) -> OrderedObject:
        """Every field except the signature, in wire order.

        Empty optional fields are omitted rather than emitted as null or
        empty containers.
        """
        payload = OrderedObject(
            version=self.version,
            author=self.author,
            public_key=self.public_key,
            content_hash=self.content_hash,
        )
        if self.parent_hash:
            payload["parent_hash"] = self.parent_hash
        payload["timestamp"] = self.timestamp
        payload["entropy_dna"] = self.entropy_dna
        if self.assets:
            payload["assets"] = [asset.to_payload() for asset in self.assets]
        if self.contribution_map:
            payload["contribution_map"] = OrderedObject(
                (path, self.contribution_map[path].to_payload())
                for path in sorted(self.contribution_map, key=path_sort_key)
            )
        if self.cognitive_proofs:
            payload["cognitive_proofs"] = OrderedObject(
                (path, _ordered(self.cognitive_proofs[path]))
                for path in sorted(self.cognitive_proofs, key=path_sort_key)
            )
        return payload

    def canonical_bytes(self) -> bytes:
        """Exact bytes the signature covers."""
        return canonical_payload_bytes(self.signable_payload())

    def payload_digest(self) -> bytes:
        """SHA-256 of the canonical payload."""
        return hashlib.sha256(self.canonical_bytes()).digest()

    def to_dict(self) -> dict[str, Any]:
        """Persisted form: payload plus signature."""
        data = self.signable_payload()
        data["signature"] = self.signature
        return data

    def to_json(self) -> str:
        return pretty_json(self.to_dict())

    def write_json(self, path: Path) -> Path:
        """Write manifest to a file and return its path."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", errors="surrogateescape") as f:
            f.write(self.to_json())
        return path

    @classmethod
    def from_dict(cls, data: dict[str, Any], validate: bool = True) -> Manifest:
        """Create from a parsed document.

        Asset order is kept exactly as stored; the signature covers it.

        Raises:
            ManifestFormatError: If validate is set and the document is invalid
        """
        if validate:
            validate_manifest_dict(data)

        return cls(
            version=data.get("version", MANIFEST_VERSION),
            author=data.get("author", ""),
            public_key=data.get("public_key", ""),
            content_hash=data.get("content_hash", ""),
            parent_hash=data.get("parent_hash") or None,
            timestamp=int(data.get("timestamp", 0)),
            entropy_dna=data.get("entropy_dna", ""),
            assets=[Asset.from_dict(item) for item in data.get("assets") or []],
            contribution_map={
                path: ContributionMetric.from_dict(metric)
                for path, metric in (data.get("contribution_map") or {}).items()
            },
            cognitive_proofs=dict(data.get("cognitive_proofs") or {}),
            signature=data.get("signature", ""),
        )

    @classmethod
    def from_bytes(cls, raw: bytes, limits: SecurityLimits | None = None) -> Manifest:
        """Parse a manifest file's bytes.

        Raises:
            SecurityError: If the document is not JSON or exceeds limits
            ManifestFormatError: If the document is not a valid manifest
        """
        return cls.from_dict(safe_load_json(raw, limits))

    @classmethod
    def from_json(cls, path: Path, limits: SecurityLimits | None = None) -> Manifest:
        """Load manifest from a JSON file."""
        with open(path, "rb") as f:
            return cls.from_bytes(f.read(), limits)


class ManifestBuilder:
    """Assembles an unsigned Manifest from a tree digest.

    Pure assembly: nothing here touches the filesystem. Author identity,
    timestamp and parent link come from the caller; contribution metrics
    and proofs come from optional providers.
    """

    def __init__(
        self,
        author: str,
        public_key: str,
        version: str = MANIFEST_VERSION,
        contributions: ContributionProvider | None = None,
        proofs: CognitiveProofProvider | None = None,
    ) -> None:
        self.author = author
        self.public_key = public_key
        self.version = version
        self.contributions = contributions
        self.proofs = proofs

    def _collect_metrics(self, assets: list[Asset]) -> dict[str, ContributionMetric]:
        metrics: dict[str, ContributionMetric] = {}
        if self.contributions is None:
            return metrics
        for asset in assets:
            try:
                metric = self.contributions.metric_for(asset.path)
            except Exception as e:
                logger.warning("Contribution metric failed for %s: %s", asset.path, e)
                continue
            if metric is not None:
                metrics[asset.path] = metric
        return metrics

    def _collect_proofs(self, assets: list[Asset]) -> dict[str, Any]:
        proofs: dict[str, Any] = {}
        if self.proofs is None:
            return proofs
        for asset in assets:
            try:
                proof = self.proofs.proof_for(asset.path)
            except Exception as e:
                logger.warning("Cognitive proof failed for %s: %s", asset.path, e)
                continue
            if proof is not None:
                proofs[asset.path] = dict(proof)
        return proofs

    def build(
        self,
        digest: TreeDigest,
        timestamp: int | None = None,
        parent_hash: str | None = None,
        entropy_dna: str | None = None,
    ) -> Manifest:
        """Build a manifest with an empty signature.

        Args:
            digest: Scan and hash result for the tree
            timestamp: Unix seconds (default: now)
            parent_hash: Digest of the previous manifest file's bytes
            entropy_dna: Opaque hex blob (default: 32 random bytes)
        """
        assets = list(digest.assets)
        return Manifest(
            version=self.version,
            author=self.author,
            public_key=self.public_key,
            content_hash=digest.content_hash,
            parent_hash=parent_hash or None,
            timestamp=int(time.time()) if timestamp is None else int(timestamp),
            entropy_dna=secrets.token_hex(32) if entropy_dna is None else entropy_dna,
            assets=assets,
            contribution_map=self._collect_metrics(assets),
            cognitive_proofs=self._collect_proofs(assets),
        )
