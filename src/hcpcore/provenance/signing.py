"""Manifest signing.

The signature is ECDSA over SHA-256 of the canonical payload (every
manifest field except the signature, in wire order), stored as hex DER.
"""

from __future__ import annotations

import logging

from cryptography.hazmat.primitives.asymmetric import ec

from hcpcore.identity import Identity, Secp256k1Identity, public_key_bytes
from hcpcore.provenance.manifest import Manifest, ManifestBuilder

logger = logging.getLogger(__name__)


class SigningError(Exception):
    """Manifest cannot be signed with the given key."""
    pass


class SigningEngine:
    """Signs finalized manifests with a caller-supplied key."""

    def __init__(self, identity: Identity | None = None) -> None:
        self.identity = identity or Secp256k1Identity()

    def author_for(self, key: ec.EllipticCurvePrivateKey) -> tuple[str, str]:
        """Return (address, compressed public key hex) for a signing key."""
        public_key = public_key_bytes(key)
        return self.identity.derive_address(public_key), public_key.hex()

    def builder_for(self, key: ec.EllipticCurvePrivateKey, **kwargs) -> ManifestBuilder:
        """ManifestBuilder whose author and public key match the signing key."""
        author, public_key = self.author_for(key)
        return ManifestBuilder(author=author, public_key=public_key, **kwargs)

    def sign(self, manifest: Manifest, key: ec.EllipticCurvePrivateKey) -> Manifest:
        """Sign a manifest in place and return it.

        Raises:
            SigningError: If the key does not match the manifest's public key
            CryptoError: If the identity cannot use the key
        """
        author, public_key = self.author_for(key)
        if manifest.public_key.lower() != public_key:
            raise SigningError(
                "Signing key does not match manifest public_key "
                f"({public_key[:16]}... vs {manifest.public_key[:16]}...)"
            )
        if manifest.author != author:
            raise SigningError(
                f"Manifest author {manifest.author} is not the key's address {author}"
            )

        signature = self.identity.sign(manifest.payload_digest(), key)
        manifest.signature = signature.hex()
        logger.debug("Signed manifest for %s (%d assets)", author, len(manifest.assets))
        return manifest
