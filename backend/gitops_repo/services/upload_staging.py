"""
Upload staging area.

Uploaded blobs are parked in a directory next to the clone root until an
add-files call consumes them. Every stored batch is deleted after a TTL
whether or not it was consumed.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from gitops_repo.services.errors import InvalidArgumentError, NotFoundError, ResourceExceededError

logger = logging.getLogger(__name__)

UPLOAD_SUFFIX = "_upload_"

Scheduler = Callable[[float, Callable[[], None]], object]


@dataclass
class StagedUpload:
    name: str
    file_path: str
    created_at: float


def upload_root_for(clone_root: str) -> str:
    return clone_root.rstrip("/\\") + UPLOAD_SUFFIX


class UploadStagingArea:
    """
    Stores uploaded files under ``<clone_root>_upload_`` with TTL cleanup.

    ``scheduler(delay, fn)`` arranges for ``fn`` to run after ``delay``
    seconds. The default starts a daemon ``threading.Timer``; tests pass a
    fake that records the callbacks.
    """

    def __init__(
        self,
        clone_root: str,
        ttl_seconds: float = 3600.0,
        size_limit: int = 10 * 1024 * 1024,
        perm: int = 0o755,
        scheduler: Scheduler | None = None,
    ):
        self.root = upload_root_for(clone_root)
        self.ttl_seconds = ttl_seconds
        self.size_limit = size_limit
        self.perm = perm
        self._scheduler = scheduler or self._start_timer
        self._timers: list[threading.Timer] = []
        self._lock = threading.Lock()

    def _start_timer(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        return timer

    def _path_for(self, name: str) -> str:
        if not name:
            raise InvalidArgumentError("upload file name is required")
        root = os.path.realpath(self.root)
        path = os.path.realpath(os.path.join(root, name.lstrip("/")))
        if not path.startswith(root + os.sep):
            raise InvalidArgumentError(f"invalid upload file name {name!r}")
        return path

    def store(self, files: Iterable[tuple[str, bytes]]) -> list[StagedUpload]:
        """
        Write a batch of ``(name, data)`` pairs and schedule their deletion.

        If any write fails, files already written by this batch are removed
        before the error propagates.
        """
        staged: list[StagedUpload] = []
        try:
            for name, data in files:
                if len(data) > self.size_limit:
                    raise ResourceExceededError(
                        f"file {name} is {len(data)} bytes, the limit is {self.size_limit}"
                    )
                path = self._path_for(name)
                os.makedirs(os.path.dirname(path), mode=self.perm, exist_ok=True)
                with open(path, "wb") as f:
                    f.write(data)
                staged.append(StagedUpload(name=name, file_path=path, created_at=time.time()))
        except BaseException:
            self.delete(staged)
            raise

        if staged:
            self._scheduler(self.ttl_seconds, lambda: self.delete(staged))
            logger.info(f"Staged {len(staged)} uploads under {self.root}, expiring in {self.ttl_seconds}s")
        return staged

    def delete(self, staged: Iterable[StagedUpload]) -> None:
        """Remove staged files. Files that are already gone are skipped."""
        for upload in staged:
            try:
                os.remove(upload.file_path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Failed to remove staged upload {upload.file_path}: {e}")

    def read(self, name: str) -> bytes:
        path = self._path_for(name)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError(f"uploaded file {name} not found, it may have expired")

    def consume(self, name: str) -> bytes:
        """Read a staged file and remove it."""
        data = self.read(name)
        try:
            os.remove(self._path_for(name))
        except FileNotFoundError:
            pass
        return data

    def close(self) -> None:
        """Cancel pending cleanup timers."""
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
