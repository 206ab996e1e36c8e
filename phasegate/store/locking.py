"""
Lock management for phasegate.

Uses flock for per-workspace and per-feature locking. Workspaces never share
a lock, so work in different workspaces proceeds without coordination.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire an exclusive file lock.

    Each call opens its own file description, so two threads of the same
    process contend for the lock just like two processes do.

    Note: lock files are never deleted. Deleting creates a race where two
    holders end up with "exclusive" locks on different inodes of one path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()


@contextmanager
def workspace_lock(root: Path, feature_id: str, role: str, timeout: float = 30.0):
    """
    Acquire the lock for one (feature, role) workspace, yield, release on exit.

    Serializes sequence allocation, verdicts and handoff pointer updates
    within the workspace.
    """
    lock_file = root / "locks" / feature_id / f"{role}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for {feature_id}/{role}"):
        yield


@contextmanager
def feature_lock(root: Path, feature_id: str, timeout: float = 30.0):
    """
    Acquire the feature-level lock, yield, release on exit.

    Used for feature creation and the abandon/archive markers.
    """
    lock_file = root / "locks" / feature_id / "_feature.lock"
    with _acquire_lock(lock_file, timeout, f"feature lock for {feature_id}"):
        yield
