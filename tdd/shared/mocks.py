"""
In-memory stand-ins for the repository descriptor and credential stores.

They satisfy the store protocols used by GitRepoFactory, so factory tests
need no database.
"""
from gitops_repo.models import SecretType
from gitops_repo.services.errors import NotFoundError
from gitops_repo.services.stores import Credential, RepositoryDescriptor, SecretRef


class MockDescriptorStore:
    """Descriptor store backed by a dict keyed by (namespace, name)."""

    def __init__(self, *descriptors: RepositoryDescriptor):
        self.descriptors = {(d.namespace, d.name): d for d in descriptors}
        self.lookups = 0

    def add(self, descriptor: RepositoryDescriptor) -> None:
        self.descriptors[(descriptor.namespace, descriptor.name)] = descriptor

    async def lookup(self, namespace: str, name: str) -> RepositoryDescriptor:
        self.lookups += 1
        try:
            return self.descriptors[(namespace, name)]
        except KeyError:
            raise NotFoundError(f"git repository {namespace}/{name} not found")


class MockCredentialStore:
    """Credential store backed by a dict keyed by SecretRef."""

    def __init__(self, credentials: dict[SecretRef, Credential] | None = None):
        self.credentials = dict(credentials or {})

    def add(self, ref: SecretRef, credential: Credential) -> None:
        self.credentials[ref] = credential

    async def get(self, ref: SecretRef) -> Credential:
        try:
            return self.credentials[ref]
        except KeyError:
            raise NotFoundError(f"secret {ref.namespace}/{ref.name} not found")


def basic_auth(username: str = "bot", password: str = "s3cret", **kwargs) -> Credential:
    return Credential(type=SecretType.BASIC_AUTH, data={"username": username, "password": password}, **kwargs)


def opaque_token(token: str = "t0ken", **kwargs) -> Credential:
    return Credential(type=SecretType.OPAQUE, data={"token": token}, **kwargs)


def secret_text(secret: str = "s3cret", **kwargs) -> Credential:
    return Credential(type=SecretType.SECRET_TEXT, data={"secret": secret}, **kwargs)
