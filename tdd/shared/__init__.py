# Cross-cutting test utilities shared across all test types

from .git_helpers import (
    BASE_TIME,
    FakeScheduler,
    RemoteRepo,
    make_clone,
    make_service,
    worktree_file,
)

from .mocks import (
    MockCredentialStore,
    MockDescriptorStore,
    basic_auth,
    opaque_token,
    secret_text,
)

__all__ = [
    # Git helpers
    "BASE_TIME",
    "FakeScheduler",
    "RemoteRepo",
    "make_clone",
    "make_service",
    "worktree_file",
    # Store mocks
    "MockCredentialStore",
    "MockDescriptorStore",
    "basic_auth",
    "opaque_token",
    "secret_text",
]
