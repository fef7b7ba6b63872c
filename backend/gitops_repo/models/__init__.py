from gitops_repo.models.git_repository import GitRepository
from gitops_repo.models.git_secret import GitSecret, SecretType

__all__ = [
    "GitRepository",
    "GitSecret",
    "SecretType",
]
