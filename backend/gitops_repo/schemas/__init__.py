from gitops_repo.schemas.git_repository import (
    GitRepositoryCreate,
    GitRepositoryRead,
    GitSecretCreate,
    GitSecretRead,
)

__all__ = [
    "GitRepositoryCreate",
    "GitRepositoryRead",
    "GitSecretCreate",
    "GitSecretRead",
]
