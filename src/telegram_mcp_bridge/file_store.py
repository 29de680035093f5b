"""Whole-file JSON persistence shared by the message queues and the session registry.

Every writer replaces the file through a temp file + ``os.replace`` so readers in
other processes never see a half-written document. Read-modify-write cycles are
serialized across processes with an advisory lock on a sibling ``.lock`` file.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

logger = logging.getLogger("telegram_mcp_bridge.file_store")


def read_json(path: Path) -> Any | None:
    """Read a JSON document.

    Returns:
        The parsed document, or None if the file is missing or unreadable.
        Corrupt files are logged as warnings, never raised.
    """
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable state file {path}: {e}")
        return None


def atomic_write_json(path: Path, obj: Any, *, indent: int = 2) -> None:
    """Replace ``path`` with the JSON form of ``obj``. Raises OSError on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=indent, ensure_ascii=False)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


def _lock(f: IO[bytes]) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl  # POSIX only

        fcntl.flock(f.fileno(), fcntl.LOCK_EX)


def _unlock(f: IO[bytes]) -> None:
    if os.name == "nt":
        import msvcrt

        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


@contextmanager
def locked(path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock for ``path`` (via ``<path>.lock``).

    If the lock file cannot be created the block still runs unlocked; losing an
    update is preferable to losing the operation.

    The lock call blocks the calling thread, which is the event loop in the
    server, while another process holds the lock. Writes are small whole-file
    rewrites, so the stall is brief.
    """
    lock_path = path.with_name(path.name + ".lock")
    f: IO[bytes] | None = None
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        f = open(lock_path, "a+b")
        # Region locks on Windows need at least one byte
        f.seek(0, os.SEEK_END)
        if f.tell() == 0:
            f.write(b"\0")
            f.flush()
        f.seek(0)
        _lock(f)
    except OSError as e:
        logger.warning(f"Could not lock {lock_path}: {e}")
        if f is not None:
            f.close()
            f = None

    try:
        yield
    finally:
        if f is not None:
            try:
                _unlock(f)
            finally:
                f.close()
