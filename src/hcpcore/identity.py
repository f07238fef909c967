"""Author identity: secp256k1 keys, signatures, addresses and key storage.

The manifest core only needs the ``Identity`` capability (sign a digest,
verify a signature, derive an address). ``Secp256k1Identity`` implements it
with ECDSA over secp256k1 and Bitcoin native-segwit (P2WPKH) addresses.

Key files are AES-256-GCM encrypted. New files use scrypt to derive the
encryption key from the passphrase and are written as
``scrypt:<salt>:<nonce>:<ciphertext>`` (hex parts). Legacy three-part files
whose key is a single SHA-256 of passphrase and salt can still be read.
"""

from __future__ import annotations

import hashlib
import os
import secrets
from pathlib import Path
from typing import Protocol

from bech32 import encode as bech32_encode
from Crypto.Hash import RIPEMD160
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

NETWORK_PREFIXES = {
    "mainnet": "bc",
    "testnet": "tb",
    "regtest": "bcrt",
}

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class CryptoError(Exception):
    """Key material is unusable: bad passphrase, corrupt file or invalid key."""
    pass


class Identity(Protocol):
    """Signing capability the manifest core consumes."""

    def sign(self, digest: bytes, key: ec.EllipticCurvePrivateKey) -> bytes:
        ...

    def verify(self, digest: bytes, signature: bytes, public_key: bytes) -> bool:
        ...

    def derive_address(self, public_key: bytes) -> str:
        ...


def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate a new secp256k1 private key."""
    return ec.generate_private_key(ec.SECP256K1())


def private_key_from_bytes(raw: bytes) -> ec.EllipticCurvePrivateKey:
    """Load a private key from its 32-byte big-endian scalar."""
    if len(raw) != 32:
        raise CryptoError(f"Private key must be 32 bytes, got {len(raw)}")
    scalar = int.from_bytes(raw, "big")
    if not 0 < scalar < SECP256K1_ORDER:
        raise CryptoError("Private key scalar out of range")
    return ec.derive_private_key(scalar, ec.SECP256K1())


def private_key_to_bytes(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_numbers().private_value.to_bytes(32, "big")


def public_key_bytes(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> bytes:
    """Compressed SEC1 encoding (33 bytes) of a key's public point."""
    if isinstance(key, ec.EllipticCurvePrivateKey):
        key = key.public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )


def load_public_key(data: bytes) -> ec.EllipticCurvePublicKey:
    """Parse an SEC1-encoded secp256k1 public key.

    Raises:
        CryptoError: If the bytes are not a point on the curve
    """
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)
    except ValueError as e:
        raise CryptoError(f"Invalid public key: {e}") from e


def public_key_from_hex(value: str) -> bytes:
    """Decode and validate a hex public key, returning its compressed form."""
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise CryptoError(f"Public key is not hex: {e}") from e
    return public_key_bytes(load_public_key(raw))


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256."""
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def _normalize_low_s(signature: bytes) -> bytes:
    r, s = decode_dss_signature(signature)
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s
    return encode_dss_signature(r, s)


class Secp256k1Identity:
    """ECDSA/secp256k1 identity with P2WPKH addresses."""

    def __init__(self, network: str = "mainnet") -> None:
        if network not in NETWORK_PREFIXES:
            raise ValueError(
                f"Unknown network: {network} (expected one of {sorted(NETWORK_PREFIXES)})"
            )
        self.network = network
        self.hrp = NETWORK_PREFIXES[network]

    def sign(self, digest: bytes, key: ec.EllipticCurvePrivateKey) -> bytes:
        """DER-encoded low-S signature over a 32-byte digest."""
        if len(digest) != 32:
            raise CryptoError(f"Digest must be 32 bytes, got {len(digest)}")
        if not isinstance(key.curve, ec.SECP256K1):
            raise CryptoError(f"Signing key is not secp256k1: {key.curve.name}")
        signature = key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return _normalize_low_s(signature)

    def verify(self, digest: bytes, signature: bytes, public_key: bytes) -> bool:
        """Check a DER signature; malformed signatures are simply invalid.

        Raises:
            CryptoError: If the public key itself is invalid
        """
        verify_key = load_public_key(public_key)
        try:
            verify_key.verify(signature, digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        except (InvalidSignature, ValueError):
            return False
        return True

    def derive_address(self, public_key: bytes) -> str:
        """Native segwit (witness v0) address for a public key."""
        compressed = public_key_bytes(load_public_key(public_key))
        address = bech32_encode(self.hrp, 0, hash160(compressed))
        if address is None:
            raise CryptoError("Failed to encode address")
        return address

    def address_for_key(self, key: ec.EllipticCurvePrivateKey) -> str:
        return self.derive_address(public_key_bytes(key))


def _scrypt_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def _legacy_key(passphrase: str, salt: bytes) -> bytes:
    return hashlib.sha256(passphrase.encode("utf-8") + salt).digest()


class KeyStore:
    """Passphrase-encrypted private key file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, key: ec.EllipticCurvePrivateKey, passphrase: str) -> Path:
        """Encrypt and write the key with owner-only permissions."""
        salt = secrets.token_bytes(16)
        nonce = secrets.token_bytes(12)
        ciphertext = AESGCM(_scrypt_key(passphrase, salt)).encrypt(
            nonce, private_key_to_bytes(key), None
        )
        data = f"scrypt:{salt.hex()}:{nonce.hex()}:{ciphertext.hex()}"

        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(data)
        return self.path

    def load(self, passphrase: str) -> ec.EllipticCurvePrivateKey:
        """Decrypt the stored key.

        Raises:
            CryptoError: If the file is unreadable, malformed, or the
                passphrase is wrong
        """
        try:
            content = self.path.read_text(encoding="ascii").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise CryptoError(f"Failed to read key file {self.path}: {e}") from e

        parts = content.split(":")
        if len(parts) == 4 and parts[0] == "scrypt":
            derive = _scrypt_key
            parts = parts[1:]
        elif len(parts) == 3:
            derive = _legacy_key
        else:
            raise CryptoError("Invalid key file format")

        try:
            salt, nonce, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise CryptoError(f"Invalid key file encoding: {e}") from e

        try:
            raw = AESGCM(derive(passphrase, salt)).decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise CryptoError("Decryption failed: invalid passphrase or corrupted file") from e

        return private_key_from_bytes(raw)
