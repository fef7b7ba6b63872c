"""
Clone locking - serializes work against one on-disk clone.

A clone's working tree is shared mutable state: a checkout from one request
must never interleave with a commit from another. Every mutating sequence
holds the clone's lock for its whole duration. Locks are re-entrant so a
composite operation (add files = checkout + pull + commit + push) can call
the individual steps while already holding the lock.

Blocking git work runs on worker threads, so these are threading locks.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from gitops_repo.services.errors import ConflictError


class LockTimeoutError(ConflictError):
    """Raised when a clone lock cannot be acquired in time."""
    pass


class CloneLockRegistry:
    """
    Hands out one re-entrant lock per normalized clone path.

    Usage:
        registry = CloneLockRegistry()
        with registry.hold("/gitops/ns/github.com/org/repo"):
            ...  # checkout, mutate, commit, push
    """

    def __init__(self):
        # clone path -> lock
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, path: str) -> threading.RLock:
        """Get or create the lock for a clone path."""
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = threading.RLock()
                self._locks[path] = lock
            return lock

    @contextmanager
    def hold(self, path: str, timeout: Optional[float] = None) -> Iterator[threading.RLock]:
        """
        Hold the lock for ``path`` for the duration of the block.

        Args:
            path: Clone path to lock
            timeout: Seconds to wait, None waits forever

        Raises:
            LockTimeoutError: If the lock was not acquired within ``timeout``
        """
        lock = self.get(path)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise LockTimeoutError(f"Timed out waiting for clone lock on {path}")
        try:
            yield lock
        finally:
            lock.release()


clone_locks = CloneLockRegistry()
