"""
Last-commit lookup for a set of paths.

Answers "which commit last changed each of these paths" (``git log -1 --
<path>`` for many paths at once) with a single walk over the ancestry of a
starting commit, instead of one history walk per path.

The walk keeps a frontier ordered by commit time, newest first. Each
frontier item holds the paths still unresolved along its line of history
together with their tree-entry hashes at that commit. When a path's hash at
a commit matches the hash at one of its parents, the path is carried to that
parent; when it matches no parent, the commit changed it and the path is
resolved. The first resolution of a path wins.
"""
import heapq
import itertools
import logging
from dataclasses import dataclass, field

from dulwich.object_store import BaseObjectStore, tree_lookup_path
from dulwich.objects import Commit, NotTreeError

logger = logging.getLogger(__name__)


@dataclass
class CommitNode:
    sha: bytes
    commit_time: int
    tree_id: bytes
    parents: list[bytes]


class CommitNodeIndex:
    """
    Lazily resolves commits to nodes.

    Parent links come from the commit-graph file when the object store has
    one, otherwise from the commit objects themselves.
    """

    def __init__(self, store: BaseObjectStore):
        self.store = store
        self.graph = store.get_commit_graph()
        self._nodes: dict[bytes, CommitNode] = {}

    def get(self, sha: bytes) -> CommitNode:
        node = self._nodes.get(sha)
        if node is None:
            commit: Commit = self.store[sha]
            parents = None
            if self.graph is not None:
                parents = self.graph.get_parents(sha)
            if parents is None:
                parents = list(commit.parents)
            node = CommitNode(sha=sha, commit_time=commit.commit_time,
                              tree_id=commit.tree, parents=list(parents))
            self._nodes[sha] = node
        return node

    def commit(self, node: CommitNode) -> Commit:
        return self.store[node.sha]


def _subtree_id(store: BaseObjectStore, tree_id: bytes, tree_path: str) -> bytes | None:
    tree_path = tree_path.strip("/")
    if not tree_path:
        return tree_id
    try:
        _, sha = tree_lookup_path(store.__getitem__, tree_id, tree_path.encode("utf-8"))
    except (KeyError, NotTreeError):
        return None
    return sha


def get_file_hashes(store: BaseObjectStore, node: CommitNode, tree_path: str,
                    paths: list[str]) -> dict[str, bytes]:
    """
    Tree-entry hashes of ``paths`` under ``tree_path`` at ``node``.

    Paths that don't exist are left out. The empty path maps to the hash of
    the ``tree_path`` tree itself.
    """
    root = _subtree_id(store, node.tree_id, tree_path)
    if root is None:
        return {}

    hashes = {}
    for path in paths:
        if not path:
            hashes[path] = root
            continue
        try:
            _, sha = tree_lookup_path(store.__getitem__, root, path.encode("utf-8"))
        except (KeyError, NotTreeError):
            continue
        hashes[path] = sha
    return hashes


@dataclass(order=True)
class _FrontierItem:
    sort_key: tuple[int, int]
    node: CommitNode = field(compare=False)
    paths: list[str] = field(compare=False)
    hashes: dict[str, bytes] = field(compare=False)


def get_last_commit_for_paths(store: BaseObjectStore, start: bytes, tree_path: str,
                              paths: list[str]) -> dict[str, Commit]:
    """
    Map each path to the newest commit reachable from ``start`` that changed it.

    Args:
        store: Object store holding the history
        start: Commit to start from (usually the branch head)
        tree_path: Directory the paths are relative to, "" for the root
        paths: Entry paths relative to ``tree_path``

    Returns:
        path -> commit. Paths that never resolve are absent.
    """
    index = CommitNodeIndex(store)
    counter = itertools.count()
    frontier: list[_FrontierItem] = []

    def push(node: CommitNode, item_paths: list[str], hashes: dict[str, bytes]) -> None:
        # heapq is a min-heap: newest commit first, then insertion order
        heapq.heappush(frontier, _FrontierItem((-node.commit_time, next(counter)), node, item_paths, hashes))

    root = index.get(start)
    push(root, list(paths), get_file_hashes(store, root, tree_path, paths))

    resolved: dict[str, CommitNode] = {}
    while frontier and len(resolved) < len(paths):
        current = heapq.heappop(frontier)
        parents = [index.get(sha) for sha in current.node.parents]
        parent_hashes = [get_file_hashes(store, parent, tree_path, current.paths) for parent in parents]

        remaining = []
        for path in current.paths:
            if path in resolved:
                continue
            unchanged = any(hashes.get(path) == current.hashes.get(path) for hashes in parent_hashes)
            if unchanged:
                remaining.append(path)
            else:
                resolved[path] = current.node

        # each remaining path follows the first parent it is unchanged in
        for parent, hashes in zip(parents, parent_hashes):
            if not remaining:
                break
            carried = [path for path in remaining if hashes.get(path) == current.hashes.get(path)]
            remaining = [path for path in remaining if hashes.get(path) != current.hashes.get(path)]
            if carried:
                push(parent, carried, hashes)

    logger.debug(f"Resolved {len(resolved)}/{len(paths)} paths under {tree_path or '/'}")
    return {path: index.commit(node) for path, node in resolved.items()}
