"""Provenance manifests: build, sign, verify and chain.

Scans a directory into path-sorted assets, folds them into one content
hash, signs the canonical manifest payload and verifies manifests against
a public key and the current tree.
"""

from __future__ import annotations

from hcpcore.provenance.chain import DirectoryChainResolver, manifest_file_digest, parent_hash_for
from hcpcore.provenance.collaborators import ContributionMetric
from hcpcore.provenance.hashing import Asset, DualHasher, TreeDigest, aggregate_content_hash, digest_tree
from hcpcore.provenance.manifest import Manifest, ManifestBuilder, ManifestFormatError
from hcpcore.provenance.signing import SigningEngine, SigningError
from hcpcore.provenance.verifier import (
    IdentityMismatch,
    SignatureInvalid,
    Tier,
    VerificationEngine,
    VerificationError,
)

__all__ = [
    "Asset",
    "ContributionMetric",
    "DirectoryChainResolver",
    "DualHasher",
    "IdentityMismatch",
    "Manifest",
    "ManifestBuilder",
    "ManifestFormatError",
    "SignatureInvalid",
    "SigningEngine",
    "SigningError",
    "Tier",
    "TreeDigest",
    "VerificationEngine",
    "VerificationError",
    "aggregate_content_hash",
    "digest_tree",
    "manifest_file_digest",
    "parent_hash_for",
]
