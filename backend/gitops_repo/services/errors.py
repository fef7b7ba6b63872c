"""
Typed failures raised by the git repository service.

Every error carries a ``kind`` so the HTTP layer can map it to a status code
without knowing the concrete class.
"""
from enum import Enum


class ErrorKind(str, Enum):
    """Error taxonomy shared by the service and the API layer."""
    INVALID_ARGUMENT = "invalid_argument"
    INVALID_SPEC = "invalid_spec"
    NOT_FOUND = "not_found"
    TRANSPORT_AUTH = "transport_auth"
    TRANSPORT_NETWORK = "transport_network"
    CONFLICT = "conflict"
    WORK_TREE_CLEAN = "work_tree_clean"
    RESOURCE_EXCEEDED = "resource_exceeded"
    OPEN_FAILED = "open_failed"


class GitOpsError(Exception):
    """Base class for git repository service errors."""
    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.value.replace("_", " ")


class InvalidArgumentError(GitOpsError):
    """Missing or malformed input."""
    kind = ErrorKind.INVALID_ARGUMENT


class InvalidSpecError(GitOpsError):
    """The repository descriptor or its credential is incomplete."""
    kind = ErrorKind.INVALID_SPEC


class NotFoundError(GitOpsError):
    """Repository, branch, commit, file or secret does not exist."""
    kind = ErrorKind.NOT_FOUND


class BranchNotFoundError(NotFoundError):
    """Raised when a branch is absent locally and on the remote."""

    @classmethod
    def default_message(cls) -> str:
        return "branch not found"


class TransportAuthError(GitOpsError):
    """The remote rejected the credentials."""
    kind = ErrorKind.TRANSPORT_AUTH


class TransportNetworkError(GitOpsError):
    """The remote is unreachable or TLS verification failed."""
    kind = ErrorKind.TRANSPORT_NETWORK


class ConflictError(GitOpsError):
    """Push rejected, typically because it is not a fast-forward."""
    kind = ErrorKind.CONFLICT


class WorkTreeCleanError(GitOpsError):
    """There is nothing to commit."""
    kind = ErrorKind.WORK_TREE_CLEAN

    @classmethod
    def default_message(cls) -> str:
        return "nothing to commit, working tree clean"


class ResourceExceededError(GitOpsError):
    """A file exceeds the upload/download size limit."""
    kind = ErrorKind.RESOURCE_EXCEEDED


class RepositoryOpenError(GitOpsError):
    """The clone directory exists but is not a usable git repository."""
    kind = ErrorKind.OPEN_FAILED
