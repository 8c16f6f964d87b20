"""Typed exception hierarchy. Every error SecretSage can raise."""
from typing import Optional


class SecretSageError(Exception):
    """Base exception for all SecretSage errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class NotInitialized(SecretSageError):
    """No vault exists where one was required."""
    def __init__(self, message: str, vault_dir: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.vault_dir = vault_dir


class AlreadyInitialized(SecretSageError):
    """A vault identity already exists at the target directory."""
    def __init__(self, message: str, vault_dir: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.vault_dir = vault_dir


class CorruptVault(SecretSageError):
    """The vault file exists but is not a valid record list."""
    def __init__(self, message: str, path: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class DecryptionFailed(SecretSageError):
    """Ciphertext could not be decrypted with the loaded identity."""
    def __init__(self, message: str, name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.name = name


class KeyMaterialError(SecretSageError):
    """Identity or recipient file is missing or holds no usable key."""
    def __init__(self, message: str, path: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class VaultLocked(SecretSageError):
    """Another process holds the vault lock."""
    pass


class ConfigError(SecretSageError):
    """A configuration file could not be parsed or validated."""
    def __init__(self, message: str, path: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


class MissingCredential(SecretSageError):
    """One or more named credentials are absent."""
    def __init__(self, message: str, names: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.names = names or []


class EnvFileError(SecretSageError):
    """The env document could not be read."""
    def __init__(self, message: str, path: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.path = path


# ── Source registry routing ─────────────────────────────────────────────────


class SourceError(SecretSageError):
    """Base exception for credential source routing failures."""
    def __init__(self, message: str, source_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.source_id = source_id


class UnknownSource(SourceError):
    """No source is registered under the requested id."""
    pass


class ReadOnlySource(SourceError):
    """The requested source does not accept writes."""
    pass


class NoWritableSource(SourceError):
    """No available source accepts writes."""
    pass
