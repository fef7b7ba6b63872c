from datetime import datetime
from pydantic import BaseModel

from gitops_repo.models.git_secret import SecretType


class GitRepositoryBase(BaseModel):
    name: str
    url: str | None = None
    secret_name: str | None = None
    secret_namespace: str | None = None
    public: bool = False
    insecure_skip_tls: bool = False
    ca_bundle: str | None = None


class GitRepositoryCreate(GitRepositoryBase):
    pass


class GitRepositoryRead(GitRepositoryBase):
    id: str
    namespace: str
    created_at: datetime

    class Config:
        from_attributes = True


class GitSecretCreate(BaseModel):
    """Credential for one or more repositories. ``data`` is write-only."""
    name: str
    type: SecretType = SecretType.BASIC_AUTH
    data: dict[str, str] = {}
    author_name: str | None = None
    author_email: str | None = None


class GitSecretRead(BaseModel):
    id: str
    namespace: str
    name: str
    type: SecretType
    author_name: str | None = None
    author_email: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True
