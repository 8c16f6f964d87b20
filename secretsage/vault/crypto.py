"""
Vault Crypto Core — Key pairs, recipient encryption and key files.

Implements the asymmetric envelope used for every vault record:
- Key agreement: ephemeral X25519 ↔ recipient X25519
- Key derivation: HKDF-SHA256(shared, salt=eph_pub|recipient_pub, "secretsage-x25519-v1")
- Payload: ChaCha20-Poly1305 → base64([version 1B][eph_pub 32B][nonce 12B][payload + tag 16B])

Security Note:
    Never log plaintext, ciphertext or identity strings.
    Nonces are random 96-bit; each record also uses a fresh ephemeral key,
    so nonce reuse under one derived key cannot happen.
"""
import os
import stat
import base64
import binascii
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import DecryptionFailed, KeyMaterialError
from ..fileio import atomic_write
from ..models import KeyPair

logger = logging.getLogger("secretsage.vault")

FORMAT_VERSION = 1
VERSION_SIZE = 1
PUBLIC_KEY_SIZE = 32  # raw X25519
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32

IDENTITY_PREFIX = "SAGE-SECRET-KEY-"
RECIPIENT_PREFIX = "sage1"

_HKDF_INFO = b"secretsage-x25519-v1"
_MIN_BLOB = VERSION_SIZE + PUBLIC_KEY_SIZE + NONCE_SIZE + TAG_SIZE


# ---------------------------------------------------------------------------
# Key encoding
# ---------------------------------------------------------------------------

def _b32(raw: bytes) -> str:
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def _unb32(text: str) -> bytes:
    padded = text.upper() + "=" * (-len(text) % 8)
    return base64.b32decode(padded)


def encode_identity(private_key: X25519PrivateKey) -> str:
    raw = private_key.private_bytes(
        serialization.Encoding.Raw,
        serialization.PrivateFormat.Raw,
        serialization.NoEncryption(),
    )
    return IDENTITY_PREFIX + _b32(raw)


def encode_recipient(public_key: X25519PublicKey) -> str:
    raw = public_key.public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw,
    )
    return RECIPIENT_PREFIX + _b32(raw).lower()


def decode_identity(identity: str) -> X25519PrivateKey:
    """Parse an identity string.

    Raises:
        KeyMaterialError: If the string is not a valid identity.
    """
    if not identity.startswith(IDENTITY_PREFIX):
        raise KeyMaterialError("Identity does not start with the expected prefix")
    try:
        raw = _unb32(identity[len(IDENTITY_PREFIX):])
        return X25519PrivateKey.from_private_bytes(raw)
    except (binascii.Error, ValueError) as err:
        raise KeyMaterialError("Identity is not a valid X25519 key") from err


def decode_recipient(recipient: str) -> X25519PublicKey:
    """Parse a recipient string.

    Raises:
        KeyMaterialError: If the string is not a valid recipient.
    """
    if not recipient.startswith(RECIPIENT_PREFIX):
        raise KeyMaterialError("Recipient does not start with the expected prefix")
    try:
        raw = _unb32(recipient[len(RECIPIENT_PREFIX):])
        return X25519PublicKey.from_public_bytes(raw)
    except (binascii.Error, ValueError) as err:
        raise KeyMaterialError("Recipient is not a valid X25519 key") from err


def derive_key(shared: bytes, salt: bytes) -> bytes:
    """Derive the 32-byte payload key from an X25519 shared secret."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=_HKDF_INFO,
    )
    return hkdf.derive(shared)


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------

class EncryptionProvider(ABC):
    """Capability interface for vault encryption backends."""

    id: str = ""
    name: str = ""

    @abstractmethod
    def generate_key_pair(self) -> KeyPair:
        ...

    @abstractmethod
    def encrypt(self, plaintext: str, recipient: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: str, identity: str) -> str:
        ...

    @abstractmethod
    def load_identity(self, path: Path) -> str:
        ...

    @abstractmethod
    def save_identity(self, identity: str, path: Path) -> None:
        ...

    @abstractmethod
    def load_recipient(self, path: Path) -> str:
        ...

    @abstractmethod
    def save_recipient(self, recipient: str, path: Path) -> None:
        ...


class X25519Provider(EncryptionProvider):
    """Recipient encryption with X25519 + HKDF-SHA256 + ChaCha20-Poly1305."""

    id = "x25519"
    name = "X25519 / ChaCha20-Poly1305"

    def generate_key_pair(self) -> KeyPair:
        private_key = X25519PrivateKey.generate()
        return KeyPair(
            public_key=encode_recipient(private_key.public_key()),
            private_key=encode_identity(private_key),
        )

    def encrypt(self, plaintext: str, recipient: str) -> str:
        """Encrypt *plaintext* so only the holder of the identity can read it.

        Args:
            plaintext: Value to protect.
            recipient: Public key string (``sage1...``).

        Returns:
            Base64 ciphertext blob.
        """
        recipient_key = decode_recipient(recipient)
        recipient_raw = recipient_key.public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        ephemeral = X25519PrivateKey.generate()
        ephemeral_raw = ephemeral.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        key = derive_key(ephemeral.exchange(recipient_key), ephemeral_raw + recipient_raw)
        nonce = os.urandom(NONCE_SIZE)
        header = bytes([FORMAT_VERSION]) + ephemeral_raw
        ct = ChaCha20Poly1305(key).encrypt(nonce, plaintext.encode("utf-8"), header)
        return base64.b64encode(header + nonce + ct).decode("ascii")

    def decrypt(self, ciphertext: str, identity: str) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises:
            DecryptionFailed: On malformed input, a foreign identity, or
                tampered data. Wrong plaintext is never returned.
        """
        try:
            blob = base64.b64decode(ciphertext.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as err:
            raise DecryptionFailed("Ciphertext is not valid base64") from err
        if len(blob) < _MIN_BLOB:
            raise DecryptionFailed(
                f"Ciphertext too short: {len(blob)} bytes (minimum {_MIN_BLOB})"
            )
        if blob[0] != FORMAT_VERSION:
            raise DecryptionFailed(f"Unsupported ciphertext version {blob[0]}")

        private_key = decode_identity(identity)
        own_raw = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        header = blob[:VERSION_SIZE + PUBLIC_KEY_SIZE]
        ephemeral_raw = header[VERSION_SIZE:]
        nonce = blob[len(header):len(header) + NONCE_SIZE]
        ct = blob[len(header) + NONCE_SIZE:]
        try:
            shared = private_key.exchange(X25519PublicKey.from_public_bytes(ephemeral_raw))
            key = derive_key(shared, ephemeral_raw + own_raw)
            plaintext = ChaCha20Poly1305(key).decrypt(nonce, ct, header)
        except (InvalidTag, ValueError) as err:
            raise DecryptionFailed(
                "Decryption failed: wrong identity or tampered ciphertext"
            ) from err
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Key files
    # ------------------------------------------------------------------

    def load_identity(self, path: Path) -> str:
        return _read_key_line(Path(path), IDENTITY_PREFIX, "identity")

    def save_identity(self, identity: str, path: Path) -> None:
        """Write the identity file with owner-only permissions (0600)."""
        created = datetime.now(timezone.utc).isoformat()
        content = (
            f"# created: {created}\n"
            "# SecretSage identity file. Keep it secret; losing it loses the vault.\n"
            f"{identity}\n"
        )
        _write_key_file(Path(path), content, stat.S_IRUSR | stat.S_IWUSR)
        logger.debug("Saved identity file %s", path)

    def load_recipient(self, path: Path) -> str:
        return _read_key_line(Path(path), RECIPIENT_PREFIX, "recipient")

    def save_recipient(self, recipient: str, path: Path) -> None:
        """Write the recipient file readable by everyone (0644)."""
        content = (
            "# SecretSage recipient (public key)\n"
            "# Share this key to allow others to encrypt credentials for you\n"
            f"{recipient}\n"
        )
        _write_key_file(
            Path(path),
            content,
            stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH,
        )
        logger.debug("Saved recipient file %s", path)


def _read_key_line(path: Path, prefix: str, kind: str) -> str:
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as err:
        raise KeyMaterialError(f"No {kind} file at {path}", path=str(path)) from err
    for line in content.splitlines():
        line = line.strip()
        if line.startswith(prefix):
            return line
    raise KeyMaterialError(f"No valid {kind} found in {path}", path=str(path))


def _write_key_file(path: Path, content: str, mode: int) -> None:
    atomic_write(path, content.encode("utf-8"), mode=mode)
