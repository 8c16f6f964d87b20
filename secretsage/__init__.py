"""SecretSage — Encrypted local credential vault for agent workflows."""

from .version import __version__
from .exceptions import SecretSageError
from .service import CredentialService

__all__ = [
    "__version__",
    "SecretSageError",
    "CredentialService",
]
