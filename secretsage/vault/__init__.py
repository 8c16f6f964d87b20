"""Vault — Encrypted credential records in one directory.

Security Note (Threat Model):
    Values are decrypted in process memory for the duration of a command.
    Anyone who can read ``identity.txt`` can decrypt the whole vault; the
    file is created owner-only (0600) and is the only protection at rest.
    Plaintext granted into ``.env`` is outside the vault's protection until
    it is revoked.
"""

from .store import VaultStore
from .crypto import EncryptionProvider, X25519Provider
from .config import SageConfig, load_config, save_config

__all__ = [
    "VaultStore",
    "EncryptionProvider",
    "X25519Provider",
    "SageConfig",
    "load_config",
    "save_config",
]
