"""Private-file helpers: owner-only directories and atomic JSON writes.

Token files and the account store hold refresh tokens, so every write goes
through write_private_file(): temp file in the same directory, chmod 0600,
then os.replace() so a reader never sees a half-written file.
"""

import logging
import os
import sys
import tempfile
import time
from pathlib import Path

logger = logging.getLogger("gsuite.files")

PRIVATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600


def _replace(src: str, dst: str, *, attempts: int = 3, backoff: float = 0.1) -> None:
    """os.replace(), retried on Windows while another process holds ``dst``."""
    for attempt in range(1, attempts + 1):
        try:
            os.replace(src, dst)
        except PermissionError:
            if sys.platform != "win32" or attempt == attempts:
                raise
            time.sleep(backoff * attempt)
        else:
            return


def ensure_private_dir(path: Path) -> Path:
    """Create ``path`` (and parents) with owner-only traversal permissions."""
    path.mkdir(parents=True, exist_ok=True, mode=PRIVATE_DIR_MODE)
    try:
        os.chmod(path, PRIVATE_DIR_MODE)
    except OSError as exc:
        logger.debug("Could not tighten permissions on %s: %s", path, exc)
    return path


def write_private_file(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` atomically with 0600 permissions.

    Raises OSError on failure; the temp file is removed and any existing
    file at ``path`` is left as it was.
    """
    if path.is_symlink():
        raise OSError(f"Refusing to write through symlink: {path}")
    ensure_private_dir(path.parent)
    fd, tmp = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.stem}_tmp_",
        suffix=".json",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        try:
            os.chmod(tmp, PRIVATE_FILE_MODE)
        except OSError:
            pass
        _replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
