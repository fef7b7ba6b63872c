import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gitops_repo.config import get_settings
from gitops_repo.database import init_db
from gitops_repo.routers import gitops, gitrepositories
from gitops_repo.services.errors import ErrorKind, GitOpsError

logger = logging.getLogger(__name__)

settings = get_settings()

STATUS_BY_KIND = {
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.INVALID_SPEC: 400,
    ErrorKind.WORK_TREE_CLEAN: 400,
    ErrorKind.RESOURCE_EXCEEDED: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TRANSPORT_AUTH: 401,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSPORT_NETWORK: 502,
    ErrorKind.OPEN_FAILED: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    from gitops_repo.database import engine
    from gitops_repo.services.git_repo_factory import clone_arena

    await init_db()
    yield
    clone_arena.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Git repository access for GitOps applications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gitrepositories.router)
app.include_router(gitops.router)


@app.exception_handler(GitOpsError)
async def gitops_error_handler(request: Request, exc: GitOpsError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": exc.kind.value})


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
