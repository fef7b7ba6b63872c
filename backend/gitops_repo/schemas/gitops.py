"""
Input/output models for the git repository service.

Field names are snake_case in Python and camelCase on the wire. Binary
payloads travel as base64 in JSON and as raw bytes in Python.
"""
import base64
import binascii
from datetime import datetime
from typing import Any, BinaryIO, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from gitops_repo.services.worktree import WorkTreeHandle

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20


class GitOpsModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


class Signature(GitOpsModel):
    name: str = ""
    email: str = ""
    when: datetime | None = None


class Commit(GitOpsModel):
    hash: str
    author: Signature
    committer: Signature
    merge_tag: str = ""
    message: str = ""
    tree_hash: str
    parent_hashes: list[str] = Field(default_factory=list)


class ListOptions(GitOpsModel):
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    def correct(self) -> "ListOptions":
        """Reset non-positive values to their defaults."""
        if self.page <= 0:
            self.page = DEFAULT_PAGE
        if self.limit <= 0:
            self.limit = DEFAULT_LIMIT
        return self


class ListResult(GitOpsModel, Generic[T]):
    items: list[T] = Field(default_factory=list)
    total_items: int = 0
    options: ListOptions | None = None


class CommitInfo(GitOpsModel):
    commit: Commit


class BranchInfo(GitOpsModel):
    ref: str
    name: str
    commit: Commit


class FileNameData(GitOpsModel):
    name: str
    data: bytes = b""  # an empty file is valid
    old_name: str = ""  # set when moving/renaming a file

    @field_validator("data", mode="before")
    @classmethod
    def decode_data(cls, v):
        # text is base64 from the wire, bytes are raw content
        if isinstance(v, str):
            try:
                return base64.b64decode(v, validate=True)
            except binascii.Error:
                raise ValueError("data must be base64 encoded")
        return v

    @field_serializer("data", when_used="json")
    def encode_data(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")


class FileInfo(FileNameData):
    size: int = 0
    is_dir: bool = False
    is_binary: bool = False
    is_symlink: bool = False


class FileCommitInfo(FileInfo):
    commit: Commit | None = None


# -----------------------------------------------------------------------------
# Operation inputs
# -----------------------------------------------------------------------------

class ListBranchesInput(GitOpsModel):
    options: ListOptions = Field(default_factory=ListOptions)
    remote: bool = False
    with_head: bool = False


class GetBranchInput(GitOpsModel):
    branch: str = ""
    remote: bool = False


class CheckOutBranchInput(GitOpsModel):
    branch: str = ""
    force: bool = False


class CleanAndPullInput(GitOpsModel):
    work_tree: WorkTreeHandle | None = Field(default=None, exclude=True)
    branch: str = ""


class ListCommitsInput(GitOpsModel):
    options: ListOptions = Field(default_factory=ListOptions)
    branch: str = ""
    file_name: str = ""


class GetCommitInput(GitOpsModel):
    commit: str = ""


class UpdateConfigInput(GitOpsModel):
    config: dict[str, dict[str, str]] | None = None


class GetFileInput(GitOpsModel):
    commit: str = ""
    branch: str = ""  # only used when commit is empty
    file: str = ""  # a regular file or symlink, never a directory
    with_file_content: bool = False


class ListFilesInput(GitOpsModel):
    branch: str = ""
    dir: str = ""
    with_file_content: bool = False
    with_last_commit: bool = False


class AddFilesInput(GitOpsModel):
    branch: str = ""
    files: list[FileNameData] = Field(default_factory=list)
    message: str = ""
    overwrite: bool = False
    unpack: bool = False  # files must hold exactly one tar.gz archive
    uploaded: bool = False  # file data comes from the upload staging area


class DeleteFilesInput(GitOpsModel):
    branch: str = ""
    files: list[str] = Field(default_factory=list)  # files or directories
    message: str = ""


class UploadFilesInput(GitOpsModel):
    files: list[FileNameData] = Field(default_factory=list)


class CommitAndPushInput(GitOpsModel):
    branch: str = ""
    work_tree: WorkTreeHandle | None = Field(default=None, exclude=True)
    message: str = ""
    sign_off: bool = False


# -----------------------------------------------------------------------------
# Operation outputs
# -----------------------------------------------------------------------------

class ListBranchesOutput(ListResult[BranchInfo]):
    pass


class ListCommitsOutput(ListResult[CommitInfo]):
    pass


class ListFilesOutput(ListResult[FileCommitInfo]):
    pass


class GetBranchOutput(GitOpsModel):
    branch: BranchInfo


class GetCommitOutput(GitOpsModel):
    commit: Commit


class CheckOutBranchOutput(GitOpsModel):
    work_tree: WorkTreeHandle = Field(exclude=True)


class CommitOutput(GitOpsModel):
    """Result of add_files, delete_files and commit_and_push."""
    commit: Commit


class ConfigOutput(GitOpsModel):
    config: dict[str, dict[str, str]] = Field(default_factory=dict)


class GetFileOutput(GitOpsModel):
    file: FileInfo
    reader: Any = Field(default=None, exclude=True)  # BinaryIO over the blob

    def open(self) -> BinaryIO:
        return self.reader


class UploadFilesOutput(GitOpsModel):
    files: list[str] = Field(default_factory=list)
