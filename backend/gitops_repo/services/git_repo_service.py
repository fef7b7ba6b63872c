"""
Git operation facade over a single clone.

One instance is built per request by ``GitRepoFactory.new_repo_service``.
Methods are blocking; the API layer runs them in the threadpool. Anything
that moves HEAD, touches the working tree or writes refs holds the clone
lock, so concurrent requests against the same clone are serialized. Reads
addressed by commit hash skip the lock.
"""
import io
import logging
import os
import posixpath
import re
import shutil
import stat
import time
from datetime import datetime, timedelta, timezone

from dulwich.config import ConfigFile
from dulwich.errors import NotGitRepository
from dulwich.object_store import tree_lookup_path
from dulwich.objects import Commit as GitCommit
from dulwich.objects import NotTreeError, Tree
from dulwich.patch import is_binary
from dulwich.repo import Repo

from gitops_repo.config import Settings
from gitops_repo.schemas.gitops import (
    AddFilesInput,
    BranchInfo,
    CheckOutBranchInput,
    CheckOutBranchOutput,
    CleanAndPullInput,
    Commit,
    CommitAndPushInput,
    CommitInfo,
    CommitOutput,
    ConfigOutput,
    DeleteFilesInput,
    FileCommitInfo,
    FileInfo,
    GetBranchInput,
    GetBranchOutput,
    GetCommitInput,
    GetCommitOutput,
    GetFileInput,
    GetFileOutput,
    ListBranchesInput,
    ListBranchesOutput,
    ListCommitsInput,
    ListCommitsOutput,
    ListFilesInput,
    ListFilesOutput,
    ListOptions,
    Signature,
    UpdateConfigInput,
    UploadFilesInput,
    UploadFilesOutput,
)
from gitops_repo.services.errors import (
    BranchNotFoundError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    RepositoryOpenError,
    ResourceExceededError,
    WorkTreeCleanError,
)
from gitops_repo.services.git_repo_factory import RepositoryClone
from gitops_repo.services.last_commit import get_last_commit_for_paths
from gitops_repo.services.transport import fetch_origin, is_ancestor, push_branch
from gitops_repo.services.upload_staging import UploadStagingArea
from gitops_repo.services.worktree import (
    HEADS_PREFIX,
    WorkTreeHandle,
    branch_ref,
    clean_untracked,
    current_branch,
    hard_reset,
    is_dirty,
    stage_all,
)
from gitops_repo.utils.archive import UnsafeArchiveError, unpack_tgz
from gitops_repo.utils.pagination import get_page, sort_by_short_name

logger = logging.getLogger(__name__)

HEAD = b"HEAD"
BRANCH_LOOKUP_LIMIT = 1000
LIST_FILES_LIMIT = 10000

_IDENTITY = re.compile(rb"^(.*?)\s*<(.*)>\s*$")


def _signature(identity: bytes, timestamp: int, tz_offset: int) -> Signature:
    match = _IDENTITY.match(identity)
    if match:
        name, email = match.group(1), match.group(2)
    else:
        name, email = identity, b""
    return Signature(
        name=name.decode("utf-8", errors="replace"),
        email=email.decode("utf-8", errors="replace"),
        when=datetime.fromtimestamp(timestamp, tz=timezone(timedelta(seconds=tz_offset))),
    )


def convert_commit(commit: GitCommit) -> Commit:
    return Commit(
        hash=commit.id.decode("ascii"),
        author=_signature(commit.author, commit.author_time, commit.author_timezone),
        committer=_signature(commit.committer, commit.commit_time, commit.commit_timezone),
        message=commit.message.decode("utf-8", errors="replace"),
        tree_hash=commit.tree.decode("ascii"),
        parent_hashes=[parent.decode("ascii") for parent in commit.parents],
    )


def short_ref_name(ref: bytes) -> str:
    if ref.startswith(HEADS_PREFIX):
        ref = ref[len(HEADS_PREFIX):]
    return ref.decode("utf-8")


def _section_name(section: tuple[bytes, ...]) -> str:
    return ".".join(part.decode("utf-8") for part in section)


def _section_key(name: str) -> tuple[bytes, ...]:
    section, _, subsection = name.partition(".")
    if subsection:
        return (section.encode("utf-8"), subsection.encode("utf-8"))
    return (section.encode("utf-8"),)


def _is_within(root: str, path: str) -> bool:
    return path.startswith(root + os.sep)


def _remove_path(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.unlink(path)


class GitRepoService:
    """Branch, commit and file operations on one repository clone."""

    def __init__(self, clone: RepositoryClone, settings: Settings, staging: UploadStagingArea):
        self.clone = clone
        self.auth = clone.auth
        self.settings = settings
        self.staging = staging
        self._repo: Repo | None = None

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.clone.local_path)
            except NotGitRepository as e:
                raise RepositoryOpenError(f"cannot open clone at {self.clone.local_path}") from e
        return self._repo

    def close(self) -> None:
        if self._repo is not None:
            self._repo.close()
            self._repo = None

    def _commit(self, sha: bytes) -> GitCommit:
        try:
            obj = self.repo[sha]
        except (KeyError, ValueError):
            raise NotFoundError(f"commit {sha.decode('ascii', errors='replace')} not found")
        if not isinstance(obj, GitCommit):
            raise NotFoundError(f"{sha.decode('ascii')} is not a commit")
        return obj

    def _fetch(self, repo: Repo | None = None) -> dict[bytes, bytes]:
        return fetch_origin(repo or self.repo, self.auth, self.settings.network_timeout)

    # -------------------------------------------------------------------------
    # Branches
    # -------------------------------------------------------------------------

    def list_branches(self, input: ListBranchesInput) -> ListBranchesOutput:
        options = input.options.correct()
        repo = self.repo

        if input.remote:
            with self.clone.lock:
                remote_refs = self._fetch()
            refs = [(name, sha) for name, sha in remote_refs.items() if name.startswith(HEADS_PREFIX)]
        else:
            refs = [(HEADS_PREFIX + name, repo.refs[HEADS_PREFIX + name])
                    for name in repo.refs.keys(base=HEADS_PREFIX)]

        # HEAD is always the clone's own head, never the one origin advertises
        if input.with_head:
            try:
                refs.append((HEAD, repo.head()))
            except KeyError:
                pass  # HEAD points at an unborn branch
        refs = sort_by_short_name(refs, lambda ref: short_ref_name(ref[0]))

        page, total = get_page(refs, options.page, options.limit)
        items = [
            BranchInfo(ref=name.decode("utf-8"), name=short_ref_name(name), commit=convert_commit(self._commit(sha)))
            for name, sha in page
        ]
        return ListBranchesOutput(items=items, total_items=total, options=options)

    def get_branch(self, input: GetBranchInput) -> GetBranchOutput:
        if not input.branch:
            raise InvalidArgumentError("branch is required")
        branches = self.list_branches(ListBranchesInput(
            options=ListOptions(page=1, limit=BRANCH_LOOKUP_LIMIT),
            remote=input.remote,
            with_head=True,
        ))
        for branch in branches.items:
            if branch.name == input.branch:
                return GetBranchOutput(branch=branch)
        raise BranchNotFoundError(f"branch {input.branch} not found")

    def _checkout(self, branch: str, force: bool) -> None:
        repo = self.repo
        ref = branch_ref(branch)
        if ref not in repo.refs:
            raise BranchNotFoundError(f"branch {branch} not found")
        if not force and is_dirty(repo):
            if current_branch(repo) == branch:
                return
            raise ConflictError(f"local changes would be overwritten by checkout of {branch}")
        repo.refs.set_symbolic_ref(HEAD, ref)
        hard_reset(repo, self._commit(repo.refs[ref]).tree)

    def check_out_branch(self, input: CheckOutBranchInput) -> CheckOutBranchOutput:
        """
        Check out a branch, creating it from origin when it only exists there.

        Like ``git checkout <branch>`` defaulting to
        ``git checkout -b <branch> --track origin/<branch>``.
        """
        if not input.branch:
            raise InvalidArgumentError("branch is required")

        with self.clone.lock:
            try:
                self._checkout(input.branch, input.force)
            except BranchNotFoundError:
                logger.warning(f"Local checkout of branch '{input.branch}' failed, fetching it from origin")
                remote_refs = fetch_origin(self.repo, self.auth, self.settings.network_timeout,
                                           branch=input.branch)
                sha = remote_refs.get(branch_ref(input.branch))
                if sha is None:
                    raise
                self.repo.refs[branch_ref(input.branch)] = sha
                self._checkout(input.branch, input.force)

        return CheckOutBranchOutput(work_tree=WorkTreeHandle(repo=self.repo, branch=input.branch))

    def clean_and_pull(self, input: CleanAndPullInput) -> None:
        """``git clean -fd && git reset --hard HEAD && git pull origin <branch>``."""
        work_tree = input.work_tree
        if work_tree is None:
            raise InvalidArgumentError("work tree is required")
        branch = input.branch or work_tree.branch
        repo = work_tree.repo
        ref = branch_ref(branch)

        with self.clone.lock:
            logger.info(f"Cleaning {work_tree.path} and pulling {branch} from origin")
            clean_untracked(repo)
            try:
                hard_reset(repo, self._commit(repo.head()).tree)
            except KeyError:
                pass  # unborn HEAD, nothing to reset

            remote_sha = self._fetch(repo).get(ref)
            if remote_sha is None:
                raise BranchNotFoundError(f"branch {branch} not found on origin")

            local_sha = repo.refs[ref] if ref in repo.refs else None
            if local_sha != remote_sha:
                if local_sha is not None and not is_ancestor(repo, local_sha, remote_sha):
                    logger.warning(f"Discarding local commits on {branch} that are not on origin")
                repo.refs[ref] = remote_sha
            repo.refs.set_symbolic_ref(HEAD, ref)
            hard_reset(repo, self._commit(remote_sha).tree)

    # -------------------------------------------------------------------------
    # Commits and config
    # -------------------------------------------------------------------------

    def list_commits(self, input: ListCommitsInput) -> ListCommitsOutput:
        if not input.branch:
            raise InvalidArgumentError("branch is required")
        options = input.options.correct()

        with self.clone.lock:
            self.check_out_branch(CheckOutBranchInput(branch=input.branch, force=True))
            paths = [input.file_name.strip("/").encode("utf-8")] if input.file_name else None
            walker = self.repo.get_walker(include=[self.repo.head()], paths=paths)
            commits = [entry.commit for entry in walker]

        page, total = get_page(commits, options.page, options.limit)
        return ListCommitsOutput(
            items=[CommitInfo(commit=convert_commit(commit)) for commit in page],
            total_items=total,
            options=options,
        )

    def get_commit(self, input: GetCommitInput) -> GetCommitOutput:
        if not input.commit:
            raise InvalidArgumentError("commit is required")
        return GetCommitOutput(commit=convert_commit(self._commit(input.commit.encode("ascii"))))

    def get_config(self) -> ConfigOutput:
        """Snapshot of ``.git/config`` as ``{"section.subsection": {key: value}}``."""
        config = self.repo.get_config()
        out = {}
        for section in config.sections():
            values = out.setdefault(_section_name(section), {})
            for key, value in config.items(section):
                values[key.decode("utf-8")] = value.decode("utf-8")
        return ConfigOutput(config=out)

    def update_config(self, input: UpdateConfigInput) -> ConfigOutput:
        """Replace the whole repository config and return the new snapshot."""
        if input.config is None:
            raise InvalidArgumentError("config is required")

        with self.clone.lock:
            config = ConfigFile()
            for section, values in input.config.items():
                for key, value in values.items():
                    config.set(_section_key(section), key.encode("utf-8"), value.encode("utf-8"))
            config.path = self.repo.get_config().path
            config.write_to_path()
        logger.info(f"Updated config of {self.clone.local_path}")
        return self.get_config()

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def _file_info(self, commit: GitCommit, file: str, with_content: bool) -> tuple[FileInfo, bytes]:
        path = file.strip("/")
        try:
            mode, sha = tree_lookup_path(self.repo.__getitem__, commit.tree, path.encode("utf-8"))
        except (KeyError, NotTreeError):
            raise NotFoundError(f"file {file} not found in {commit.id.decode('ascii')[:8]}")
        if stat.S_ISDIR(mode):
            raise InvalidArgumentError(f"{file} is a directory")

        try:
            data = self.repo[sha].as_raw_string()
        except KeyError:
            raise NotFoundError(f"file {file} is not stored in this repository")
        info = FileInfo(
            name=posixpath.basename(path),
            size=len(data),
            is_binary=is_binary(data),
            is_symlink=stat.S_ISLNK(mode),
        )
        if with_content and info.size <= self.settings.file_size_limit:
            info.data = data
        return info, data

    def get_file(self, input: GetFileInput) -> GetFileOutput:
        """
        Read one file from a commit, or from the head of a branch.

        Content is only included when requested and within the size limit;
        a reader over the blob is always returned.
        """
        if not (input.commit or input.branch) or not input.file:
            raise InvalidArgumentError("commit or branch, and file are required")

        if input.commit:
            commit = self._commit(input.commit.encode("ascii"))
        else:
            with self.clone.lock:
                self.check_out_branch(CheckOutBranchInput(branch=input.branch, force=False))
                commit = self._commit(self.repo.head())

        info, data = self._file_info(commit, input.file, input.with_file_content)
        return GetFileOutput(file=info, reader=io.BytesIO(data))

    def list_files(self, input: ListFilesInput) -> ListFilesOutput:
        """
        List a directory at the head of a branch.

        The first item is the directory itself. With ``with_last_commit`` each
        entry carries the last commit that changed it and the directory entry
        carries the newest of those.
        """
        if not input.dir or not input.branch:
            raise InvalidArgumentError("dir and branch are required")
        if not input.dir.endswith("/"):
            raise InvalidArgumentError(f"directory path {input.dir} must end with '/'")
        tree_path = input.dir.strip("/")

        with self.clone.lock:
            self.check_out_branch(CheckOutBranchInput(branch=input.branch, force=True))
            head = self.repo.head()
        commit = self._commit(head)

        tree = self.repo[commit.tree]
        if tree_path:
            try:
                mode, sha = tree_lookup_path(self.repo.__getitem__, commit.tree, tree_path.encode("utf-8"))
            except (KeyError, NotTreeError):
                raise NotFoundError(f"directory {input.dir} not found")
            tree = self.repo[sha]
            if not isinstance(tree, Tree):
                raise InvalidArgumentError(f"{input.dir} is not a directory")

        items = [FileCommitInfo(name=tree_path, is_dir=True)]
        names = []
        for entry in tree.iteritems():
            name = entry.path.decode("utf-8")
            names.append(name)
            if stat.S_ISDIR(entry.mode):
                items.append(FileCommitInfo(name=name, is_dir=True))
            elif stat.S_ISREG(entry.mode) or stat.S_ISLNK(entry.mode):
                info, _ = self._file_info(commit, posixpath.join(tree_path, name), input.with_file_content)
                items.append(FileCommitInfo(**info.model_dump()))

        if input.with_last_commit:
            revs = get_last_commit_for_paths(self.repo.object_store, head, tree_path, names)
            latest = None
            for item in items[1:]:
                found = revs.get(item.name)
                if found is None:
                    continue
                item.commit = convert_commit(found)
                if latest is None or item.commit.committer.when > latest.committer.when:
                    latest = item.commit
            items[0].commit = latest

        return ListFilesOutput(
            items=items,
            total_items=len(items),
            options=ListOptions(page=1, limit=LIST_FILES_LIMIT),
        )

    def _work_tree_path(self, root: str, name: str, allow_root: bool = False) -> str:
        """
        Resolve a repository-relative path, refusing anything outside the tree.

        Symlinks in the leading directories are followed before the check; the
        last component is kept as is so a link itself can be replaced or removed.
        """
        root = os.path.realpath(root)
        rel = name.strip("/")
        if not rel:
            if allow_root:
                return root
            raise InvalidArgumentError("file name is required")
        path = os.path.normpath(os.path.join(root, rel))
        if not _is_within(root, path):
            raise InvalidArgumentError(f"invalid file name {name!r}")
        parent = os.path.realpath(os.path.dirname(path))
        if parent != root and not _is_within(root, parent):
            raise InvalidArgumentError(f"invalid file name {name!r}")
        path = os.path.join(parent, os.path.basename(path))
        if os.path.relpath(path, root).split(os.sep)[0] == ".git":
            raise InvalidArgumentError(f"invalid file name {name!r}")
        return path

    def _unpack_dir(self, root: str, name: str) -> str:
        """Directory an archive is unpacked into; an empty name is the tree root."""
        root = os.path.realpath(root)
        target = os.path.realpath(self._work_tree_path(root, name, allow_root=True))
        if target == root:
            return target
        if not _is_within(root, target) or os.path.relpath(target, root).split(os.sep)[0] == ".git":
            raise InvalidArgumentError(f"invalid directory {name!r}")
        return target

    def add_files(self, input: AddFilesInput) -> CommitOutput:
        """
        Write files into a branch and push one commit.

        File content comes inline, from the upload staging area, or from a
        single tar.gz archive unpacked into the named directory.
        """
        if not input.branch or not input.files or not input.message:
            raise InvalidArgumentError("branch, files and message are required")
        perm = self.settings.new_file_perm

        with self.clone.lock:
            work_tree = self.check_out_branch(CheckOutBranchInput(branch=input.branch, force=True)).work_tree
            self.clean_and_pull(CleanAndPullInput(work_tree=work_tree, branch=input.branch))
            root = os.path.abspath(work_tree.path)

            files = input.files
            if input.uploaded:
                files = [file.model_copy(update={"data": self.staging.consume(file.name)}) for file in files]
            for file in files:
                if len(file.data) > self.settings.file_size_limit:
                    raise ResourceExceededError(f"file {file.name} exceeds {self.settings.file_size_limit} bytes")

            if input.unpack:
                archive = files[0]
                try:
                    unpack_tgz(archive.data, self._unpack_dir(root, archive.name), perm)
                except UnsafeArchiveError as e:
                    raise InvalidArgumentError(str(e)) from e
            else:
                for file in files:
                    path = self._work_tree_path(root, file.name)
                    if os.path.lexists(path) and not input.overwrite:
                        logger.info(f"Skipping existing file {file.name}")
                        continue
                    if file.old_name:
                        _remove_path(self._work_tree_path(root, file.old_name))
                    _remove_path(path)
                    os.makedirs(os.path.dirname(path), mode=perm, exist_ok=True)
                    with open(path, "wb") as f:
                        f.write(file.data)

            return self.commit_and_push(CommitAndPushInput(
                branch=input.branch,
                work_tree=work_tree,
                message=input.message,
                sign_off=True,
            ))

    def delete_files(self, input: DeleteFilesInput) -> CommitOutput:
        if not input.branch or not input.files or not input.message:
            raise InvalidArgumentError("branch, files and message are required")

        with self.clone.lock:
            work_tree = self.check_out_branch(CheckOutBranchInput(branch=input.branch, force=True)).work_tree
            self.clean_and_pull(CleanAndPullInput(work_tree=work_tree, branch=input.branch))
            root = os.path.abspath(work_tree.path)

            for file in input.files:
                path = self._work_tree_path(root, file)
                if not os.path.lexists(path):
                    raise NotFoundError(f"file {file} not found")
                _remove_path(path)

            return self.commit_and_push(CommitAndPushInput(
                branch=input.branch,
                work_tree=work_tree,
                message=input.message,
                sign_off=True,
            ))

    def upload_files(self, input: UploadFilesInput) -> UploadFilesOutput:
        if not input.files:
            raise InvalidArgumentError("at least one file is required")
        staged = self.staging.store((file.name, file.data) for file in input.files)
        return UploadFilesOutput(files=[upload.name for upload in staged])

    # -------------------------------------------------------------------------
    # Commit and push
    # -------------------------------------------------------------------------

    def _commit_author(self, repo: Repo) -> tuple[str, str]:
        if self.auth.author.name:
            return self.auth.author.name, self.auth.author.email
        config = repo.get_config()
        try:
            name = config.get((b"user",), b"name").decode("utf-8")
            email = config.get((b"user",), b"email").decode("utf-8")
        except KeyError:
            return self.settings.signer_name, self.settings.signer_email
        return name, email

    def commit_and_push(self, input: CommitAndPushInput) -> CommitOutput:
        """
        Stage everything, commit and push the branch to origin.

        Raises:
            WorkTreeCleanError: Nothing changed since the branch head
            ConflictError: The push was rejected
        """
        if not input.message or input.work_tree is None:
            raise InvalidArgumentError("message and work tree are required")
        repo = input.work_tree.repo

        with self.clone.lock:
            branch = input.branch or input.work_tree.branch or current_branch(repo)
            if not branch:
                raise InvalidArgumentError("cannot commit on a detached HEAD")
            ref = branch_ref(branch)

            stage_all(repo)
            tree_id = repo.open_index().commit(repo.object_store)
            old_sha = repo.refs[ref] if ref in repo.refs else None
            if old_sha is not None and self._commit(old_sha).tree == tree_id:
                raise WorkTreeCleanError()

            name, email = self._commit_author(repo)
            message = input.message
            if input.sign_off:
                sign_off = f"Signed-off-by: {name}"
                if email:
                    sign_off = f"{sign_off} <{email}>"
                message = f"{message}\n\n{sign_off}"
            if not message.endswith("\n"):
                message += "\n"

            identity = f"{name} <{email}>".encode("utf-8")
            commit = GitCommit()
            commit.tree = tree_id
            commit.parents = [old_sha] if old_sha else []
            commit.author = identity
            commit.committer = identity
            commit.commit_time = commit.author_time = int(time.time())
            commit.commit_timezone = commit.author_timezone = 0
            commit.encoding = b"UTF-8"
            commit.message = message.encode("utf-8")
            repo.object_store.add_object(commit)

            if not repo.refs.set_if_equals(ref, old_sha, commit.id):
                raise ConflictError(f"branch {branch} moved while committing")
            logger.info(f"Committed {commit.id.decode('ascii')[:8]} on {branch}")

            try:
                push_branch(repo, branch, self.auth, self.settings.network_timeout)
            except Exception:
                # keep the local branch in line with what origin accepted
                if old_sha is None:
                    repo.refs.remove_if_equals(ref, commit.id)
                else:
                    repo.refs.set_if_equals(ref, commit.id, old_sha)
                raise

        return CommitOutput(commit=convert_commit(commit))

    def delete_clone(self) -> None:
        """Remove the local working directory of this clone."""
        with self.clone.lock:
            self.close()
            if os.path.exists(self.clone.local_path):
                shutil.rmtree(self.clone.local_path)
                logger.info(f"Deleted clone {self.clone.local_path}")
