"""
Repository access manager.

Turns a (namespace, repository name) pair into an on-disk clone plus the
credentials needed to talk to its remote, cloning on first access and
reopening afterwards.
"""
import logging
import os
import shutil
import threading
from dataclasses import dataclass

from dulwich import porcelain
from dulwich.errors import NotGitRepository
from dulwich.repo import Repo
from starlette.concurrency import run_in_threadpool

from gitops_repo.config import Settings, get_settings
from gitops_repo.models import SecretType
from gitops_repo.services.errors import InvalidSpecError, RepositoryOpenError
from gitops_repo.services.locking import clone_locks
from gitops_repo.services.stores import (
    Credential,
    CredentialStore,
    RepositoryDescriptor,
    RepositoryDescriptorStore,
)
from gitops_repo.services.transport import (
    AuthContext,
    Author,
    ProgressLogStream,
    client_kwargs,
    translate_errors,
)
from gitops_repo.services.upload_staging import UploadStagingArea

logger = logging.getLogger(__name__)

DEFAULT_ROOT_DIR = "/gitops"


@dataclass
class RepositoryClone:
    local_path: str
    remote_url: str
    auth: AuthContext
    lock: threading.RLock


class CloneArena:
    """Process-wide state shared by every clone: upload staging areas."""

    def __init__(self):
        self._staging: dict[str, UploadStagingArea] = {}
        self._guard = threading.Lock()

    def staging_for(self, local_path: str, settings: Settings) -> UploadStagingArea:
        with self._guard:
            area = self._staging.get(local_path)
            if area is None:
                area = UploadStagingArea(
                    local_path,
                    ttl_seconds=settings.upload_ttl_seconds,
                    size_limit=settings.file_size_limit,
                    perm=settings.new_file_perm,
                )
                self._staging[local_path] = area
            return area

    def close(self) -> None:
        with self._guard:
            areas, self._staging = list(self._staging.values()), {}
        for area in areas:
            area.close()


clone_arena = CloneArena()


def get_repo_dir(root_dir: str, namespace: str, url: str) -> str:
    """Deterministic clone location for a remote URL within a namespace."""
    for prefix in ("http://", "https://", "git@"):
        if url.startswith(prefix):
            url = url[len(prefix):]
    url = url.replace(":", "/", 1)
    root = os.path.normpath(os.path.join(root_dir or DEFAULT_ROOT_DIR, namespace))
    path = os.path.normpath(os.path.join(root, url.lstrip("/")))
    if not path.startswith(root + os.sep):
        raise InvalidSpecError(f"git repository URL {url} does not map to a clone directory")
    return path


def token_from_credential(credential: Credential) -> tuple[str, str]:
    """Return ``(token, username)`` for the credential's type."""
    data = credential.data
    if credential.type == SecretType.BASIC_AUTH:
        return data.get("password", ""), data.get("username", "")
    if credential.type == SecretType.OPAQUE:
        return data.get("token", ""), ""
    if credential.type == SecretType.SECRET_TEXT:
        return data.get("secret", ""), ""
    return "", ""


class GitRepoFactory:
    """
    Resolves repositories to clones and builds per-request services.

    Usage:
        factory = GitRepoFactory(descriptors, credentials)
        service = await factory.new_repo_service("team-a", "deploys", user="alice")
    """

    def __init__(
        self,
        descriptors: RepositoryDescriptorStore,
        credentials: CredentialStore,
        settings: Settings | None = None,
        arena: CloneArena | None = None,
    ):
        self.descriptors = descriptors
        self.credentials = credentials
        self.settings = settings or get_settings()
        self.arena = arena or clone_arena

    async def get_descriptor(self, namespace: str, name: str) -> RepositoryDescriptor:
        descriptor = await self.descriptors.lookup(namespace, name)
        if not descriptor.url:
            raise InvalidSpecError(f"git repository {namespace}/{name} has no URL")
        if descriptor.secret_ref is None and not descriptor.public:
            raise InvalidSpecError(f"git repository {namespace}/{name} has no secret")
        return descriptor

    async def get_auth(self, descriptor: RepositoryDescriptor, user: str) -> AuthContext:
        token, username = "", ""
        credential = None
        if descriptor.secret_ref is not None:
            credential = await self.credentials.get(descriptor.secret_ref)
            token, username = token_from_credential(credential)
            if not token:
                ref = descriptor.secret_ref
                raise InvalidSpecError(f"secret {ref.namespace}/{ref.name} holds no token")

        username = username or user
        author_name = credential.author_name if credential else ""
        author_email = credential.author_email if credential else ""
        return AuthContext(
            username=username,
            secret=token,
            insecure_skip_tls=descriptor.insecure_skip_tls,
            ca_bundle=descriptor.ca_bundle,
            author=Author(name=author_name or username, email=author_email),
        )

    def _open_or_clone(self, path: str, url: str, auth: AuthContext) -> None:
        with clone_locks.hold(path):
            if os.path.exists(path):
                try:
                    Repo(path).close()
                except NotGitRepository as e:
                    raise RepositoryOpenError(f"{path} exists but is not a git repository") from e
                logger.debug(f"Opened existing clone {path}")
                return

            logger.info(f"Cloning {url} into {path}")
            os.makedirs(os.path.dirname(path), mode=self.settings.new_file_perm, exist_ok=True)
            try:
                with translate_errors(url):
                    repo = porcelain.clone(
                        url,
                        path,
                        checkout=True,
                        errstream=ProgressLogStream(prefix="clone: "),
                        **client_kwargs(url, auth, self.settings.network_timeout),
                    )
                repo.close()
            except BaseException:
                shutil.rmtree(path, ignore_errors=True)
                raise
            logger.info(f"Cloned {url}")

    async def resolve(self, namespace: str, name: str, user: str) -> RepositoryClone:
        """Open the clone for a repository, cloning it first if needed."""
        descriptor = await self.get_descriptor(namespace, name)
        auth = await self.get_auth(descriptor, user)
        path = get_repo_dir(self.settings.root_dir, namespace, descriptor.url)
        await run_in_threadpool(self._open_or_clone, path, descriptor.url, auth)
        return RepositoryClone(local_path=path, remote_url=descriptor.url, auth=auth,
                               lock=clone_locks.get(path))

    async def new_repo_service(self, namespace: str, name: str, user: str):
        from gitops_repo.services.git_repo_service import GitRepoService

        clone = await self.resolve(namespace, name, user)
        return GitRepoService(clone, self.settings, self.arena.staging_for(clone.local_path, self.settings))

    def remove_clone_dir(self, path: str) -> None:
        with clone_locks.hold(path):
            if os.path.exists(path):
                shutil.rmtree(path)
                logger.info(f"Deleted clone {path}")

    async def delete_clone(self, namespace: str, name: str) -> None:
        """Remove the local clone of a repository; the remote is untouched."""
        descriptor = await self.descriptors.lookup(namespace, name)
        if not descriptor.url:
            raise InvalidSpecError(f"git repository {namespace}/{name} has no URL")
        path = get_repo_dir(self.settings.root_dir, namespace, descriptor.url)
        await run_in_threadpool(self.remove_clone_dir, path)
