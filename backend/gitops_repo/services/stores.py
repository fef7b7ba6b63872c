"""
Repository descriptor and credential lookup.

The git service only depends on the two protocols below. The SQL-backed
implementations read the ``git_repositories`` and ``git_secrets`` tables.
"""
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitops_repo.models import GitRepository, GitSecret, SecretType
from gitops_repo.services.errors import NotFoundError


@dataclass(frozen=True)
class SecretRef:
    namespace: str
    name: str


@dataclass
class RepositoryDescriptor:
    namespace: str
    name: str
    url: str = ""
    secret_ref: SecretRef | None = None
    public: bool = False
    insecure_skip_tls: bool = False
    ca_bundle: bytes = b""


@dataclass
class Credential:
    type: SecretType
    data: dict[str, str] = field(default_factory=dict)
    author_name: str = ""
    author_email: str = ""


class RepositoryDescriptorStore(Protocol):
    async def lookup(self, namespace: str, name: str) -> RepositoryDescriptor:
        """Raises NotFoundError when the repository is not registered."""
        ...


class CredentialStore(Protocol):
    async def get(self, ref: SecretRef) -> Credential:
        """Raises NotFoundError when the secret does not exist."""
        ...


def descriptor_from_model(repo: GitRepository) -> RepositoryDescriptor:
    secret_ref = None
    if repo.secret_name:
        secret_ref = SecretRef(namespace=repo.secret_namespace or repo.namespace, name=repo.secret_name)
    return RepositoryDescriptor(
        namespace=repo.namespace,
        name=repo.name,
        url=repo.url or "",
        secret_ref=secret_ref,
        public=repo.public,
        insecure_skip_tls=repo.insecure_skip_tls,
        ca_bundle=(repo.ca_bundle or "").encode("ascii"),
    )


class SQLRepositoryDescriptorStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_model(self, namespace: str, name: str) -> GitRepository:
        result = await self.db.execute(
            select(GitRepository).where(GitRepository.namespace == namespace, GitRepository.name == name)
        )
        repo = result.scalar_one_or_none()
        if not repo:
            raise NotFoundError(f"git repository {namespace}/{name} not found")
        return repo

    async def lookup(self, namespace: str, name: str) -> RepositoryDescriptor:
        return descriptor_from_model(await self.get_model(namespace, name))


class SQLCredentialStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, ref: SecretRef) -> Credential:
        result = await self.db.execute(
            select(GitSecret).where(GitSecret.namespace == ref.namespace, GitSecret.name == ref.name)
        )
        secret = result.scalar_one_or_none()
        if not secret:
            raise NotFoundError(f"secret {ref.namespace}/{ref.name} not found")
        return Credential(
            type=SecretType(secret.type),
            data=dict(secret.data or {}),
            author_name=secret.author_name or "",
            author_email=secret.author_email or "",
        )
