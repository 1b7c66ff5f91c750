"""
Shared fixtures: in-memory database, scripted analysis provider, identities and an API client.
"""
import io
import zipfile
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from codemark.config import settings
from codemark.config.feature_flags import FeatureFlags
from codemark.database import get_db
from codemark.main import app
from codemark.orm.base import Base
from codemark.orm.project import Project, Task
from codemark.routes.submissions import limiter
from codemark.services.analysis_provider import get_analysis_provider
from codemark.tests.helpers import (
    FakeProvider, STUDENT, OTHER_STUDENT, TUTOR, MANAGER, auth_headers
)

# Background polling would run inside the request under ASGITransport
FeatureFlags.FEATURE_BACKGROUND_POLLING = False
limiter.enabled = False

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(settings, "UPLOAD_DIR", path)
    return path


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def project(db_session: AsyncSession) -> Project:
    project = Project(
        title="Library Management System",
        description="CRUD app with a REST API",
        key_features=["books", "loans"],
        created_by=TUTOR.user_id,
        tasks=[Task(name="Backend API", assignee_id=STUDENT.user_id)],
    )
    db_session.add(project)
    await db_session.commit()
    await db_session.refresh(project)
    return project


@pytest.fixture
def task(project: Project) -> Task:
    return project.tasks[0]


@pytest.fixture
def make_zip():
    def build(files: Dict[str, str]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            for name, text in files.items():
                archive.writestr(name, text)
        return buffer.getvalue()
    return build


@pytest.fixture
def student_headers():
    return auth_headers(STUDENT)


@pytest.fixture
def other_student_headers():
    return auth_headers(OTHER_STUDENT)


@pytest.fixture
def tutor_headers():
    return auth_headers(TUTOR)


@pytest.fixture
def manager_headers():
    return auth_headers(MANAGER)


@pytest_asyncio.fixture
async def client(session_factory, provider) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_analysis_provider] = lambda: provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
