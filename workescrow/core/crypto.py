"""
workescrow/core/crypto.py

Ed25519 identities for escrow parties.

An identity's address IS its raw Ed25519 public key, hex encoded:
    address                : @property → 64-char lowercase hex
    sign(data)             : bytes → base64url str, no padding
    verify_detached(...)   : @staticmethod, verifies with ONLY an address

Boss, admin and worker are all addresses. The account never holds private
keys; it only checks that a call was signed by the address it claims.
"""

import base64
import logging
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

logger = logging.getLogger(__name__)

ADDRESS_HEX_LENGTH = 64


def is_valid_address(value) -> bool:
    """True if value is a 64-char lowercase hex string."""
    if not isinstance(value, str) or len(value) != ADDRESS_HEX_LENGTH:
        return False
    if value != value.lower():
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


class Ed25519Identity:
    """
    Signing identity of one escrow party.

        Ed25519Identity.generate()                       → new random identity
        Ed25519Identity.from_file(path)                  → load PEM private key
        Ed25519Identity.from_private_bytes(seed)         → raw 32-byte seed
        Ed25519Identity.verify_detached(data, sig, addr) → @staticmethod

        identity.address          (@property) → 64-char lowercase hex
        identity.sign(data: bytes)            → base64url str (no padding)
        identity.save(path)                   → write PEM private key
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key: Ed25519PrivateKey = private_key
        self._public_key:  Ed25519PublicKey  = private_key.public_key()
        self._address: str = (
            self._public_key
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls) -> "Ed25519Identity":
        """Generate a new random identity."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_file(cls, path: Path) -> "Ed25519Identity":
        """
        Load an identity from a PEM private key file.
        Raises FileNotFoundError if path does not exist.
        Raises ValueError if the file is not an Ed25519 PEM key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        try:
            private_key = load_pem_private_key(path.read_bytes(), password=None)
        except (ValueError, TypeError) as exc:
            raise ValueError(
                f"Failed to load Ed25519 key from {path}: {exc}"
            ) from exc
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(
                f"Key file {path} does not contain an Ed25519 private key"
            )
        return cls(private_key)

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> "Ed25519Identity":
        """
        Load an identity from a raw 32-byte seed.
        Raises ValueError if seed is not exactly 32 bytes.
        """
        if len(seed) != 32:
            raise ValueError(
                f"Ed25519 seed must be 32 bytes, got {len(seed)}"
            )
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    # ── Address ───────────────────────────────────────────────

    @property
    def address(self) -> str:
        """64-character lowercase hex of the public key. A @property."""
        return self._address

    # ── Signing ───────────────────────────────────────────────

    def sign(self, data: bytes) -> str:
        """
        Sign data with Ed25519. Returns base64url string, no '=' padding.
        Caller is responsible for canonicalization.
        """
        raw_sig = self._private_key.sign(data)
        return base64.urlsafe_b64encode(raw_sig).rstrip(b"=").decode("ascii")

    # ── Verification ──────────────────────────────────────────

    @staticmethod
    def verify_detached(
        data:          bytes,
        signature_b64: Optional[str],
        address:       str,
    ) -> bool:
        """
        Verify an Ed25519 signature using ONLY the signer's address.

        Returns True if valid. False for any failure: wrong key, bad
        encoding, wrong length, corrupted signature. Never raises.
        """
        if not signature_b64 or not is_valid_address(address):
            return False
        try:
            pub = Ed25519PublicKey.from_public_bytes(bytes.fromhex(address))

            padding = 4 - len(signature_b64) % 4
            raw_sig = base64.urlsafe_b64decode(signature_b64 + "=" * (padding % 4))
            if len(raw_sig) != 64:
                return False

            pub.verify(raw_sig, data)
            return True
        except (InvalidSignature, ValueError, TypeError) as exc:
            logger.debug(f"Signature verification failed for {address[:16]}...: {exc}")
            return False

    # ── Persistence ───────────────────────────────────────────

    def save(self, path: Path) -> None:
        """
        Write the private key to disk as a PEM file.
        Creates parent directories if needed.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            encoding=             Encoding.PEM,
            format=               PrivateFormat.PKCS8,
            encryption_algorithm= NoEncryption(),
        )
        path.write_bytes(pem)

    def __repr__(self) -> str:
        return f"Ed25519Identity(address={self._address[:16]}...)"
