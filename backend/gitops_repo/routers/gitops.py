import base64
import binascii
import mimetypes

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from gitops_repo.config import get_settings
from gitops_repo.database import get_db
from gitops_repo.schemas.gitops import (
    AddFilesInput,
    CheckOutBranchInput,
    CleanAndPullInput,
    CommitOutput,
    ConfigOutput,
    DeleteFilesInput,
    FileInfo,
    FileNameData,
    GetBranchInput,
    GetBranchOutput,
    GetCommitInput,
    GetCommitOutput,
    GetFileInput,
    GitOpsModel,
    ListBranchesInput,
    ListBranchesOutput,
    ListCommitsInput,
    ListCommitsOutput,
    ListFilesInput,
    ListFilesOutput,
    ListOptions,
    UpdateConfigInput,
    UploadFilesInput,
    UploadFilesOutput,
)
from gitops_repo.services.git_repo_factory import GitRepoFactory
from gitops_repo.services.git_repo_service import GitRepoService
from gitops_repo.services.stores import SQLCredentialStore, SQLRepositoryDescriptorStore

router = APIRouter(prefix="/api/v1alpha3/namespaces/{namespace}/gitrepositories", tags=["gitops"])

MAX_UPLOAD_FILES = 10


class CheckOutRequest(GitOpsModel):
    force: bool = False


class AddFilesRequest(GitOpsModel):
    files: list[FileNameData] = []
    message: str = ""
    overwrite: bool = False
    unpack: bool = False
    uploaded: bool = False


def get_caller(x_remote_user: str | None = Header(default=None)) -> str:
    """Acting user, as set by the authenticating proxy in front of the API."""
    return x_remote_user or get_settings().default_user


def get_repo_factory(db: AsyncSession = Depends(get_db)) -> GitRepoFactory:
    return GitRepoFactory(SQLRepositoryDescriptorStore(db), SQLCredentialStore(db))


async def get_repo_service(
    namespace: str,
    repo: str,
    user: str = Depends(get_caller),
    factory: GitRepoFactory = Depends(get_repo_factory),
):
    service = await factory.new_repo_service(namespace, repo, user)
    try:
        yield service
    finally:
        service.close()


def decode_path(encoded: str) -> str:
    """File path segments are base64 encoded so they may contain '/'."""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail=f"Invalid base64 file path: {encoded}")


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------

@router.get("/{repo}/configs/default", response_model=ConfigOutput)
async def get_config(service: GitRepoService = Depends(get_repo_service)):
    return await run_in_threadpool(service.get_config)


@router.put("/{repo}/configs/default", response_model=ConfigOutput)
async def update_config(body: UpdateConfigInput, service: GitRepoService = Depends(get_repo_service)):
    return await run_in_threadpool(service.update_config, body)


# -----------------------------------------------------------------------------
# Branches and commits
# -----------------------------------------------------------------------------

@router.get("/{repo}/branches", response_model=ListBranchesOutput)
async def list_branches(
    page: int = 1,
    limit: int = 20,
    with_head: bool = Query(False, alias="withHead"),
    remote: bool = False,
    service: GitRepoService = Depends(get_repo_service),
):
    return await run_in_threadpool(service.list_branches, ListBranchesInput(
        options=ListOptions(page=page, limit=limit),
        remote=remote,
        with_head=with_head,
    ))


@router.get("/{repo}/branches/{branch}", response_model=GetBranchOutput)
async def get_branch(branch: str, service: GitRepoService = Depends(get_repo_service)):
    return await run_in_threadpool(service.get_branch, GetBranchInput(branch=branch, remote=True))


@router.post("/{repo}/branches/{branch}/checkouts", status_code=204)
async def check_out_branch(
    branch: str,
    body: CheckOutRequest | None = None,
    service: GitRepoService = Depends(get_repo_service),
):
    force = body.force if body else False
    await run_in_threadpool(service.check_out_branch, CheckOutBranchInput(branch=branch, force=force))
    return Response(status_code=204)


@router.post("/{repo}/branches/{branch}/pulls", status_code=204)
async def pull_branch(branch: str, service: GitRepoService = Depends(get_repo_service)):
    def checkout_and_pull():
        with service.clone.lock:
            out = service.check_out_branch(CheckOutBranchInput(branch=branch, force=True))
            service.clean_and_pull(CleanAndPullInput(work_tree=out.work_tree, branch=branch))

    await run_in_threadpool(checkout_and_pull)
    return Response(status_code=204)


@router.get("/{repo}/branches/{branch}/commits", response_model=ListCommitsOutput)
async def list_commits(
    branch: str,
    page: int = 1,
    limit: int = 20,
    file: str = "",
    service: GitRepoService = Depends(get_repo_service),
):
    return await run_in_threadpool(service.list_commits, ListCommitsInput(
        options=ListOptions(page=page, limit=limit),
        branch=branch,
        file_name=file,
    ))


@router.get("/{repo}/commits/{commit}", response_model=GetCommitOutput)
async def get_commit(commit: str, service: GitRepoService = Depends(get_repo_service)):
    return await run_in_threadpool(service.get_commit, GetCommitInput(commit=commit))


# -----------------------------------------------------------------------------
# Files
# -----------------------------------------------------------------------------

@router.get("/{repo}/branches/{branch}/files", response_model=ListFilesOutput)
async def list_files(
    branch: str,
    file: str = "/",
    with_content: bool = Query(False, alias="withContent"),
    with_last_commit: bool = Query(False, alias="withLastCommit"),
    service: GitRepoService = Depends(get_repo_service),
):
    return await run_in_threadpool(service.list_files, ListFilesInput(
        branch=branch,
        dir=file,
        with_file_content=with_content,
        with_last_commit=with_last_commit,
    ))


async def _get_file(service: GitRepoService, file: str, with_content: bool,
                    branch: str = "", commit: str = ""):
    return await run_in_threadpool(service.get_file, GetFileInput(
        branch=branch,
        commit=commit,
        file=decode_path(file),
        with_file_content=with_content,
    ))


def _raw_response(out) -> Response:
    data = out.file.data or out.open().read()
    media_type = mimetypes.guess_type(out.file.name)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{out.file.name}"'},
    )


@router.get("/{repo}/branches/{branch}/files/{file}", response_model=FileInfo)
async def get_branch_file(
    branch: str,
    file: str,
    with_content: bool = Query(False, alias="withContent"),
    service: GitRepoService = Depends(get_repo_service),
):
    out = await _get_file(service, file, with_content, branch=branch)
    return out.file


@router.get("/{repo}/branches/{branch}/rawfiles/{file}")
async def download_branch_file(branch: str, file: str, service: GitRepoService = Depends(get_repo_service)):
    return _raw_response(await _get_file(service, file, True, branch=branch))


@router.get("/{repo}/commits/{commit}/files/{file}", response_model=FileInfo)
async def get_commit_file(
    commit: str,
    file: str,
    with_content: bool = Query(False, alias="withContent"),
    service: GitRepoService = Depends(get_repo_service),
):
    out = await _get_file(service, file, with_content, commit=commit)
    return out.file


@router.get("/{repo}/commits/{commit}/rawfiles/{file}")
async def download_commit_file(commit: str, file: str, service: GitRepoService = Depends(get_repo_service)):
    return _raw_response(await _get_file(service, file, True, commit=commit))


@router.post("/{repo}/branches/{branch}/files", response_model=CommitOutput)
async def add_files(branch: str, body: AddFilesRequest, service: GitRepoService = Depends(get_repo_service)):
    return await run_in_threadpool(service.add_files, AddFilesInput(branch=branch, **body.model_dump()))


@router.delete("/{repo}/branches/{branch}/files", response_model=CommitOutput)
async def delete_files(
    branch: str,
    file: list[str] = Query(default=[]),
    message: str = "",
    service: GitRepoService = Depends(get_repo_service),
):
    return await run_in_threadpool(service.delete_files, DeleteFilesInput(
        branch=branch,
        files=file,
        message=message,
    ))


@router.post("/{repo}/uploads", response_model=UploadFilesOutput)
async def upload_files(request: Request, service: GitRepoService = Depends(get_repo_service)):
    """
    Stage files for a later add-files call with ``uploaded=true``.

    Multipart form with up to ten parts ``file0``..``file9``, each with a
    ``file<i>_name`` field giving its path in the repository.
    """
    limit = service.settings.file_size_limit
    form = await request.form()
    files = []
    for i in range(MAX_UPLOAD_FILES):
        field = f"file{i}"
        upload = form.get(field)
        if upload is None or isinstance(upload, str):
            break
        data = await upload.read()
        if len(data) > limit:
            raise HTTPException(status_code=400, detail=f"File {field} size exceeds limit {limit} bytes")
        name = form.get(f"{field}_name")
        if not name:
            raise HTTPException(status_code=400, detail=f"No name provided for file {field}")
        files.append(FileNameData(name=name, data=data))

    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    return await run_in_threadpool(service.upload_files, UploadFilesInput(files=files))


@router.delete("/{repo}/clone", status_code=204)
async def delete_clone(namespace: str, repo: str, factory: GitRepoFactory = Depends(get_repo_factory)):
    await factory.delete_clone(namespace, repo)
    return Response(status_code=204)
