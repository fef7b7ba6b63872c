"""
Remote transport for a clone: authentication, TLS policy, fetch and push.

All network traffic goes through dulwich's client layer. dulwich and OS
failures are translated into the service's error types here so callers
never see transport-specific exceptions.
"""
import io
import logging
import ssl
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import urllib3
from dulwich.client import HTTPUnauthorized, get_transport_and_path
from dulwich.errors import GitProtocolError, HangupException, MissingCommitError
from dulwich.repo import Repo

from gitops_repo.services.errors import (
    ConflictError,
    TransportAuthError,
    TransportNetworkError,
)
from gitops_repo.services.worktree import HEADS_PREFIX, REMOTES_PREFIX

logger = logging.getLogger(__name__)

ORIGIN = "origin"


@dataclass(frozen=True)
class Author:
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class AuthContext:
    """Credentials and TLS policy used for every remote operation on a clone."""
    username: str = ""
    secret: str = field(default="", repr=False)
    insecure_skip_tls: bool = False
    ca_bundle: bytes = field(default=b"", repr=False)
    author: Author = field(default_factory=Author)

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.username and self.secret)


class ProgressLogStream(io.RawIOBase):
    """Binary stream that forwards git progress lines to a logger."""

    def __init__(self, log: logging.Logger = logger, prefix: str = ""):
        self._log = log
        self._prefix = prefix
        self._buffer = b""

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._buffer += bytes(data)
        # progress updates end with \r, final lines with \n
        *lines, self._buffer = self._buffer.replace(b"\r", b"\n").split(b"\n")
        for line in lines:
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                self._log.debug(f"{self._prefix}{text}")
        return len(data)


def _pool_manager(auth: AuthContext) -> urllib3.PoolManager:
    if auth.insecure_skip_tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif auth.ca_bundle:
        context = ssl.create_default_context(cadata=auth.ca_bundle.decode("ascii"))
    else:
        context = ssl.create_default_context()
    return urllib3.PoolManager(ssl_context=context)


def client_kwargs(url: str, auth: AuthContext, timeout: float | None = None) -> dict:
    """
    Keyword arguments for ``get_transport_and_path`` and ``porcelain.clone``.

    Credentials, TLS settings and timeouts only apply to http(s) remotes;
    local and ssh transports take none of them.
    """
    if not url.startswith(("http://", "https://")):
        return {}
    kwargs = {"pool_manager": _pool_manager(auth)}
    if auth.has_basic_auth:
        kwargs["username"] = auth.username
        kwargs["password"] = auth.secret
    if timeout is not None:
        kwargs["timeout"] = timeout
    return kwargs


@contextmanager
def translate_errors(url: str) -> Iterator[None]:
    """Re-raise dulwich and OS failures as service errors."""
    try:
        yield
    except HTTPUnauthorized as e:
        raise TransportAuthError(f"authentication failed for {url}") from e
    except (GitProtocolError, HangupException) as e:
        raise TransportNetworkError(f"git protocol error talking to {url}: {e}") from e
    except (ssl.SSLError, urllib3.exceptions.HTTPError) as e:
        raise TransportNetworkError(f"cannot reach {url}: {e}") from e
    except OSError as e:
        raise TransportNetworkError(f"cannot reach {url}: {e}") from e


def remote_url(repo: Repo) -> str:
    config = repo.get_config()
    return config.get((b"remote", ORIGIN.encode()), b"url").decode("utf-8")


def fetch_origin(
    repo: Repo,
    auth: AuthContext,
    timeout: float | None = None,
    branch: str | None = None,
) -> dict[bytes, bytes]:
    """
    Fetch from origin and update ``refs/remotes/origin/*``.

    Args:
        branch: Only fetch ``refs/heads/<branch>``; None fetches every branch

    Returns:
        The fetched refs as advertised (``refs/heads/...`` -> sha)
    """
    url = remote_url(repo)
    wanted = HEADS_PREFIX + branch.encode("utf-8") if branch else None
    determine_wants = None
    if wanted is not None:
        def determine_wants(refs, depth=None):
            sha = refs.get(wanted)
            return [sha] if sha is not None and sha not in repo.object_store else []

    with translate_errors(url):
        client, path = get_transport_and_path(url, **client_kwargs(url, auth, timeout))
        result = client.fetch(
            path,
            repo,
            determine_wants=determine_wants,
            progress=ProgressLogStream(prefix="fetch: ").write,
        )

    remote_refs = {name: sha for name, sha in result.refs.items() if sha is not None}
    if wanted is not None:
        remote_refs = {name: sha for name, sha in remote_refs.items() if name == wanted}
    for name, sha in remote_refs.items():
        if name.startswith(HEADS_PREFIX):
            repo.refs[REMOTES_PREFIX + name[len(HEADS_PREFIX):]] = sha
    logger.info(f"Fetched {len(remote_refs)} refs from {url}")
    return remote_refs


def is_ancestor(repo: Repo, ancestor: bytes, descendant: bytes) -> bool:
    """
    Check if ``ancestor`` is reachable from ``descendant``.

    History that is missing from the object store is treated as unrelated.
    """
    if ancestor == descendant:
        return True
    try:
        for entry in repo.get_walker(include=[descendant]):
            if entry.commit.id == ancestor:
                return True
    except (KeyError, MissingCommitError):
        return False
    return False


def push_branch(repo: Repo, branch: str, auth: AuthContext, timeout: float | None = None) -> None:
    """
    Push ``refs/heads/<branch>`` to origin as a fast-forward.

    Raises:
        ConflictError: The remote moved on, or rejected the update
    """
    url = remote_url(repo)
    ref = HEADS_PREFIX + branch.encode("utf-8")
    new_sha = repo.refs[ref]

    def update_refs(remote_refs):
        old_sha = remote_refs.get(ref)
        if old_sha and old_sha not in repo.object_store:
            raise ConflictError(f"remote branch {branch} has commits not present locally")
        if old_sha and not is_ancestor(repo, old_sha, new_sha):
            raise ConflictError(f"push to {branch} is not a fast-forward")
        updated = dict(remote_refs)
        updated[ref] = new_sha
        return updated

    with translate_errors(url):
        client, path = get_transport_and_path(url, **client_kwargs(url, auth, timeout))
        result = client.send_pack(
            path,
            update_refs,
            generate_pack_data=repo.object_store.generate_pack_data,
            progress=ProgressLogStream(prefix="push: ").write,
        )

    status = (result.ref_status or {}).get(ref)
    if status is not None:
        raise ConflictError(f"push to {branch} rejected: {status}")
    repo.refs[REMOTES_PREFIX + branch.encode("utf-8")] = new_sha
    logger.info(f"Pushed {branch} ({new_sha.decode('ascii')[:8]}) to {url}")
