"""Advisory cross-process lock around vault read-modify-write passes."""
import os
import time
import fcntl
import logging
from pathlib import Path
from typing import Any

from ..exceptions import VaultLocked

logger = logging.getLogger("secretsage.vault")

_RETRY_INTERVAL = 0.05


class VaultFileLock:
    """Exclusive ``flock`` on a lock file next to the vault.

    Blocks (polling every 50ms) until the lock is free or *timeout* seconds
    pass, then raises :class:`VaultLocked`. The lock is released when the
    file descriptor is closed, so a crashed holder never wedges the vault.
    """

    def __init__(self, path: Path, timeout: float = 10.0):
        self.path = Path(path)
        self.timeout = timeout
        self._fd: int | None = None

    def __enter__(self) -> "VaultFileLock":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)
        started = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - started > self.timeout:
                    os.close(fd)
                    raise VaultLocked(
                        f"Vault is locked by another process ({self.path}); "
                        f"gave up after {self.timeout}s"
                    ) from None
                time.sleep(_RETRY_INTERVAL)
        self._fd = fd
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
