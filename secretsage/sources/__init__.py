"""Pluggable credential backends and their priority registry."""

from .base import CredentialSource, WritableSource
from .local import LocalVaultSource
from .static import StaticSource
from .registry import SourceRegistry

__all__ = [
    "CredentialSource",
    "WritableSource",
    "LocalVaultSource",
    "StaticSource",
    "SourceRegistry",
]
