from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from gitops_repo.database import get_db
from gitops_repo.models import GitRepository, GitSecret
from gitops_repo.schemas import GitRepositoryCreate, GitRepositoryRead, GitSecretCreate, GitSecretRead
from gitops_repo.services.git_repo_factory import GitRepoFactory, get_repo_dir
from gitops_repo.routers.gitops import get_repo_factory

router = APIRouter(prefix="/api/v1alpha3/namespaces/{namespace}", tags=["gitrepositories"])


@router.get("/gitrepositories", response_model=list[GitRepositoryRead])
async def list_git_repositories(namespace: str, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(GitRepository).where(GitRepository.namespace == namespace).order_by(GitRepository.name)
    )
    return result.scalars().all()


@router.post("/gitrepositories", response_model=GitRepositoryRead, status_code=201)
async def create_git_repository(namespace: str, repo: GitRepositoryCreate, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(GitRepository).where(GitRepository.namespace == namespace, GitRepository.name == repo.name)
    )
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Git repository {repo.name} already exists")

    db_repo = GitRepository(namespace=namespace, **repo.model_dump())
    db.add(db_repo)
    await db.commit()
    await db.refresh(db_repo)
    return db_repo


@router.get("/gitrepositories/{repo}", response_model=GitRepositoryRead)
async def get_git_repository(namespace: str, repo: str, factory: GitRepoFactory = Depends(get_repo_factory)):
    return await factory.descriptors.get_model(namespace, repo)


@router.delete("/gitrepositories/{repo}", status_code=204)
async def delete_git_repository(
    namespace: str,
    repo: str,
    db: AsyncSession = Depends(get_db),
    factory: GitRepoFactory = Depends(get_repo_factory),
):
    """Delete a repository descriptor and its local clone."""
    db_repo = await factory.descriptors.get_model(namespace, repo)
    if db_repo.url:
        path = get_repo_dir(factory.settings.root_dir, namespace, db_repo.url)
        await run_in_threadpool(factory.remove_clone_dir, path)
    await db.delete(db_repo)
    await db.commit()
    return Response(status_code=204)


@router.post("/secrets", response_model=GitSecretRead, status_code=201)
async def create_secret(namespace: str, secret: GitSecretCreate, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(GitSecret).where(GitSecret.namespace == namespace, GitSecret.name == secret.name)
    )
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Secret {secret.name} already exists")

    db_secret = GitSecret(
        namespace=namespace,
        name=secret.name,
        type=secret.type.value,
        data=secret.data,
        author_name=secret.author_name,
        author_email=secret.author_email,
    )
    db.add(db_secret)
    await db.commit()
    await db.refresh(db_secret)
    return db_secret
