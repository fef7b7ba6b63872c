# Test data factories for creating model instances

from .base import BaseFactory, generate_namespace, generate_remote_url, generate_uuid
from .models import GitRepositoryFactory, GitSecretFactory
from .api import (
    add_files_payload,
    encode_path,
    file_payload,
    git_repository_create_payload,
    secret_create_payload,
)

__all__ = [
    # Base utilities
    "BaseFactory",
    "generate_uuid",
    "generate_namespace",
    "generate_remote_url",
    # Model factories
    "GitRepositoryFactory",
    "GitSecretFactory",
    # API factories
    "git_repository_create_payload",
    "secret_create_payload",
    "file_payload",
    "add_files_payload",
    "encode_path",
]
