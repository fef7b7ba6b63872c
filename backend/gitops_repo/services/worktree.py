"""
Working tree helpers built on dulwich.

dulwich's porcelain covers most of what a checkout needs, but a hard reset
has to remove tracked files that are absent from the target tree, and
"stage everything" has to pick up deletions as well as new files. These
helpers do that on top of the index and worktree primitives.
"""
import logging
import os
from dataclasses import dataclass

from dulwich import porcelain
from dulwich.ignore import IgnoreFilterManager
from dulwich.repo import Repo

logger = logging.getLogger(__name__)

HEADS_PREFIX = b"refs/heads/"
REMOTES_PREFIX = b"refs/remotes/origin/"


@dataclass
class WorkTreeHandle:
    """A checked-out working tree, scoped to one clone and one branch."""
    repo: Repo
    branch: str

    @property
    def path(self) -> str:
        return self.repo.path


def branch_ref(branch: str) -> bytes:
    return HEADS_PREFIX + branch.encode("utf-8")


def remote_ref(branch: str) -> bytes:
    return REMOTES_PREFIX + branch.encode("utf-8")


def current_branch(repo: Repo) -> str | None:
    """Name of the branch HEAD points to, None when detached."""
    refs, _ = repo.refs.follow(b"HEAD")
    target = refs[-1] if len(refs) > 1 else None
    if target and target.startswith(HEADS_PREFIX):
        return target[len(HEADS_PREFIX):].decode("utf-8")
    return None


def is_dirty(repo: Repo) -> bool:
    """True when tracked files differ from HEAD (untracked files don't count)."""
    status = porcelain.status(repo, untracked_files="no")
    staged = any(status.staged.get(kind) for kind in ("add", "delete", "modify"))
    return staged or bool(status.unstaged)


def _prune_empty_dirs(root: str, directory: str) -> None:
    while directory != root and directory.startswith(root + os.sep):
        try:
            os.rmdir(directory)
        except OSError:
            return
        directory = os.path.dirname(directory)


def hard_reset(repo: Repo, tree_id: bytes) -> None:
    """
    Make the index and the tracked part of the working tree match ``tree_id``.

    Tracked files that the target tree doesn't contain are deleted, the rest
    are rewritten from the object store. Untracked files are left alone.
    """
    target = {entry.path for entry in repo.object_store.iter_tree_contents(tree_id)}
    root = os.path.abspath(repo.path)
    for path in list(repo.open_index()):
        if path in target:
            continue
        full_path = os.path.join(root, os.fsdecode(path))
        if os.path.lexists(full_path) and not os.path.isdir(full_path):
            os.unlink(full_path)
        _prune_empty_dirs(root, os.path.dirname(full_path))
    repo.get_worktree().reset_index(tree_id)


def clean_untracked(repo: Repo) -> None:
    """Remove untracked files and directories, keeping ignored ones."""
    porcelain.clean(repo, repo.path)


def _tree_path(root: str, full_path: str) -> str:
    return os.path.relpath(full_path, root).replace(os.sep, "/")


def stage_all(repo: Repo) -> None:
    """Stage additions, modifications and deletions, like ``git add -A``."""
    root = os.path.abspath(repo.path)
    paths = {os.fsdecode(path) for path in repo.open_index()}
    ignore = IgnoreFilterManager.from_repo(repo)

    for dirpath, dirnames, filenames in os.walk(root):
        if dirpath == root:
            dirnames[:] = [name for name in dirnames if name != ".git"]
        # symlinks to directories are listed as directories but tracked as files
        linked = [name for name in dirnames if os.path.islink(os.path.join(dirpath, name))]
        dirnames[:] = [name for name in dirnames if name not in linked]
        for name in filenames + linked:
            tree_path = _tree_path(root, os.path.join(dirpath, name))
            if tree_path not in paths and ignore.is_ignored(tree_path):
                continue
            paths.add(tree_path)

    # paths that no longer exist on disk are dropped from the index
    repo.get_worktree().stage(sorted(paths))
