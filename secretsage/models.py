"""
SecretSage data models.

Persisted shapes (``VaultEntry`` and its ``CredentialMetadata``) use camelCase
aliases so the vault file stays readable by other SecretSage clients; Python
code always works with the snake_case field names.

Security Note:
    ``Credential.value`` holds plaintext. It is excluded from ``repr`` and
    must never be logged.
"""
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class VaultLocation(str, Enum):
    """Where a vault directory lives."""

    GLOBAL = "global"
    LOCAL = "local"
    CUSTOM = "custom"


class CredentialMetadata(_CamelModel):
    """Everything about a credential except its value."""

    name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None


class VaultEntry(_CamelModel):
    """One record of the vault file."""

    name: str
    encrypted_value: str
    metadata: Optional[CredentialMetadata] = None

    def describe(self) -> CredentialMetadata:
        """Return metadata for this entry, never touching the ciphertext."""
        if self.metadata is None:
            return CredentialMetadata(name=self.name)
        return self.metadata.model_copy(update={"name": self.name})


class Credential(BaseModel):
    """A credential with its decrypted value."""

    name: str
    value: str = Field(repr=False)
    source: str
    metadata: Optional[CredentialMetadata] = None


class KeyPair(BaseModel):
    """Vault key material; ``private_key`` is the identity."""

    public_key: str
    private_key: str = Field(repr=False)


class ExportResult(BaseModel):
    """Bulk decryption result; ``failures`` maps name to reason."""

    credentials: list[Credential] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class GrantResult(BaseModel):
    granted: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    env_path: Path
    backup_path: Optional[Path] = None


class RevokeResult(BaseModel):
    revoked: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    env_path: Path


class InitResult(BaseModel):
    public_key: str
    vault_dir: Path
    location: VaultLocation


class ImportResult(BaseModel):
    added: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class VaultPresence(BaseModel):
    """Which vault directories currently hold an identity."""

    local: bool = False
    global_: bool = Field(default=False, alias="global")
    custom: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @property
    def any(self) -> bool:
        return self.local or self.global_ or self.custom


class StatusReport(BaseModel):
    vault_path: Path
    location: Optional[VaultLocation] = None
    exists: bool = False
    stored: int = 0
    granted: list[str] = Field(default_factory=list)
    env_path: Path
    env_exists: bool = False

    @property
    def available(self) -> int:
        return self.stored - len(self.granted)
