"""Whole-file atomic replace used by the vault and the env document."""
import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* so readers see the old or the new file, never a mix.

    Protocol: temp file in the same directory → fsync → rename over the
    target → fsync the directory. When *mode* is None an existing file keeps
    its permissions and a new one gets 0600.

    Raises:
        OSError: Any write failure; the previous content is left untouched.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        try:
            mode = path.stat().st_mode & 0o777
        except FileNotFoundError:
            mode = 0o600

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    dir_fd = os.open(path.parent, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)
