"""
Git fixtures built with dulwich.

``RemoteRepo`` is a bare repository on disk that plays the part of
``origin``. Commits are written object by object with fixed timestamps so
history-dependent assertions are deterministic.
"""
import os
import threading
from pathlib import Path

from dulwich.index import commit_tree
from dulwich.objects import Blob, Commit
from dulwich.repo import Repo

from gitops_repo.config import Settings
from gitops_repo.services.git_repo_factory import GitRepoFactory, RepositoryClone, get_repo_dir
from gitops_repo.services.git_repo_service import GitRepoService
from gitops_repo.services.transport import AuthContext, Author
from gitops_repo.services.upload_staging import UploadStagingArea

BASE_TIME = 1_700_000_000
REGULAR_FILE = 0o100644
SYMLINK = 0o120000
TEST_AUTHOR = b"Test Author <author@example.com>"


class RemoteRepo:
    """A bare repository standing in for a remote."""

    def __init__(self, path: Path, default_branch: str = "main"):
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)
        self.repo = Repo.init_bare(str(self.path))
        self.repo.refs.set_symbolic_ref(b"HEAD", f"refs/heads/{default_branch}".encode())
        self._clock = BASE_TIME

    @property
    def url(self) -> str:
        return str(self.path)

    def head_of(self, branch: str) -> bytes:
        return self.repo.refs[f"refs/heads/{branch}".encode()]

    def files_at(self, sha: bytes) -> dict[bytes, tuple[bytes, int]]:
        tree = self.repo[sha].tree
        return {
            entry.path: (entry.sha, entry.mode)
            for entry in self.repo.object_store.iter_tree_contents(tree)
        }

    def read(self, branch: str, path: str) -> bytes | None:
        files = self.files_at(self.head_of(branch))
        entry = files.get(path.encode())
        return self.repo[entry[0]].data if entry else None

    def commit(
        self,
        branch: str,
        files: dict[str, bytes | None],
        message: str = "update",
        parents: list[bytes] | None = None,
        when: int | None = None,
        links: dict[str, str] | None = None,
    ) -> bytes:
        """
        Commit changes on top of ``branch`` (or explicit ``parents``).

        A ``None`` value deletes the path. ``links`` adds symlinks (path -> target).
        """
        ref = f"refs/heads/{branch}".encode()
        if parents is None:
            parents = [self.repo.refs[ref]] if ref in self.repo.refs else []

        entries = self.files_at(parents[0]) if parents else {}
        for path, data in files.items():
            if data is None:
                entries.pop(path.encode(), None)
                continue
            blob = Blob.from_string(data)
            self.repo.object_store.add_object(blob)
            entries[path.encode()] = (blob.id, REGULAR_FILE)
        for path, target in (links or {}).items():
            blob = Blob.from_string(target.encode("utf-8"))
            self.repo.object_store.add_object(blob)
            entries[path.encode()] = (blob.id, SYMLINK)

        tree_id = commit_tree(
            self.repo.object_store,
            [(path, sha, mode) for path, (sha, mode) in entries.items()],
        )

        if when is None:
            self._clock += 60
            when = self._clock

        commit = Commit()
        commit.tree = tree_id
        commit.parents = parents
        commit.author = commit.committer = TEST_AUTHOR
        commit.commit_time = commit.author_time = when
        commit.commit_timezone = commit.author_timezone = 0
        commit.encoding = b"UTF-8"
        commit.message = f"{message}\n".encode()
        self.repo.object_store.add_object(commit)
        self.repo.refs[ref] = commit.id
        return commit.id

    def create_branch(self, name: str, sha: bytes) -> None:
        self.repo.refs[f"refs/heads/{name}".encode()] = sha


def make_clone(remote: RemoteRepo, settings: Settings, namespace: str = "team-a",
               auth: AuthContext | None = None) -> RepositoryClone:
    """Clone ``remote`` the way the factory does, without descriptor lookups."""
    from gitops_repo.services.locking import clone_locks

    auth = auth or AuthContext(username="alice", author=Author(name="alice", email="alice@example.com"))
    path = get_repo_dir(settings.root_dir, namespace, remote.url)
    GitRepoFactory(None, None, settings=settings)._open_or_clone(path, remote.url, auth)
    return RepositoryClone(local_path=path, remote_url=remote.url, auth=auth, lock=clone_locks.get(path))


def make_service(remote: RemoteRepo, settings: Settings, scheduler=None,
                 auth: AuthContext | None = None) -> GitRepoService:
    clone = make_clone(remote, settings, auth=auth)
    staging = UploadStagingArea(
        clone.local_path,
        ttl_seconds=settings.upload_ttl_seconds,
        size_limit=settings.file_size_limit,
        scheduler=scheduler,
    )
    return GitRepoService(clone, settings, staging)


def worktree_file(service: GitRepoService, name: str) -> str:
    return os.path.join(service.clone.local_path, name)


class FakeScheduler:
    """Records delayed callbacks instead of starting timers."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, delay, fn):
        with self._lock:
            self.calls.append((delay, fn))
        return None

    def run_all(self):
        with self._lock:
            calls, self.calls = self.calls, []
        for _, fn in calls:
            fn()
