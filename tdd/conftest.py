"""
Root conftest.py - Shared fixtures for all test types.

This file is automatically loaded by pytest and provides:
- Database session fixtures for integration tests
- FastAPI test client wired to temporary clone storage
- A bare "origin" repository and a service cloned from it
- Common test utilities
"""
import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add backend to path for imports
backend_path = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from gitops_repo.config import Settings
from gitops_repo.database import Base, get_db
from gitops_repo.main import app
from gitops_repo.routers.gitops import get_repo_factory
from gitops_repo.services.git_repo_factory import CloneArena, GitRepoFactory
from gitops_repo.services.stores import SQLCredentialStore, SQLRepositoryDescriptorStore

from shared.git_helpers import FakeScheduler, RemoteRepo, make_service


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def async_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a transactional database session for tests.

    Each test gets a fresh session that is rolled back after the test.
    """
    async_session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_factory() as session:
        yield session
        await session.rollback()


# -----------------------------------------------------------------------------
# Git Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with clones stored under the test's temporary directory."""
    return Settings(
        root_dir=str(tmp_path / "gitops"),
        network_timeout=None,
        file_size_limit=1024 * 1024,
    )


@pytest.fixture
def remote(tmp_path) -> RemoteRepo:
    """Bare origin repository with one commit on main."""
    origin = RemoteRepo(tmp_path / "remote" / "deploys.git")
    origin.commit("main", {
        "README.md": b"# deploys\n",
        "apps/web/values.yaml": b"replicas: 1\n",
    }, message="Initial commit")
    return origin


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def service(remote, settings, scheduler):
    """GitRepoService over a fresh clone of ``remote``."""
    svc = make_service(remote, settings, scheduler=scheduler)
    yield svc
    svc.close()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing.

    This client is configured to use the test database session and to keep
    clones under the test's temporary directory.
    """
    arena = CloneArena()

    async def override_get_db():
        yield db_session

    def override_get_repo_factory(db: AsyncSession = Depends(get_db)) -> GitRepoFactory:
        return GitRepoFactory(
            SQLRepositoryDescriptorStore(db),
            SQLCredentialStore(db),
            settings=settings,
            arena=arena,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_repo_factory] = override_get_repo_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    arena.close()


# -----------------------------------------------------------------------------
# Marker-based fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _mark_test(request):
    """Automatically apply markers based on test location."""
    if "unit" in str(request.fspath):
        request.applymarker(pytest.mark.unit)
    elif "integration" in str(request.fspath):
        request.applymarker(pytest.mark.integration)


# -----------------------------------------------------------------------------
# Utility Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def anyio_backend():
    """Required for pytest-asyncio compatibility."""
    return "asyncio"
