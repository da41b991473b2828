"""Advisory cross-process lock on a database directory."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

import portalocker

from .errors import LockTimeoutError, StorageIOError

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".lock"
POLL_INTERVAL = 0.05


@contextlib.contextmanager
def database_lock(
    db_root: str | Path, exclusive: bool = True, timeout: float = 30.0
) -> Iterator[Path]:
    """Hold a lock on ``{db_root}/.lock`` for the duration of the block.

    Args:
        db_root: Database directory (created if missing)
        exclusive: Exclusive (writer) or shared (reader) lock
        timeout: Seconds to wait before giving up

    Raises:
        LockTimeoutError: another process held the lock past timeout
    """
    lock_path = Path(db_root) / LOCK_FILENAME
    mode = portalocker.LockFlags.EXCLUSIVE if exclusive else portalocker.LockFlags.SHARED
    lock = portalocker.Lock(
        lock_path,
        mode="a",
        timeout=timeout,
        check_interval=POLL_INTERVAL,
        flags=mode | portalocker.LockFlags.NON_BLOCKING,
    )

    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock.acquire()
    except portalocker.exceptions.LockException as e:
        raise LockTimeoutError(f"Timeout acquiring database lock {lock_path}") from e
    except OSError as e:
        raise StorageIOError(f"Cannot open lock file {lock_path}: {e}") from e

    logger.debug(f"Acquired {'exclusive' if exclusive else 'shared'} lock on {lock_path}")
    try:
        yield lock_path
    finally:
        lock.release()
        logger.debug(f"Released lock on {lock_path}")
