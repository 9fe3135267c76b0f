############################################################
#
# mathchat - Math-focused Chat Service
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for MathChat tests."""

import os

# Must be set before anything imports backend.app.settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("STREAM_CHUNK_DELAY", "0")

from typing import AsyncGenerator, List, Optional, Sequence

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.core.backends.base import BackendAdapter
from backend.app.core.backends.registry import BackendAdapters
from backend.app.core.errors import ChatError
from backend.app.core.schemas import BackendReply, Turn
from backend.app.db import models  # noqa: F401  (register tables)
from backend.app.db.base import Base
from backend.app.db.models import ModelType

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


class FakeAdapter(BackendAdapter):
    """Adapter returning a fixed reply (or raising) and recording calls."""

    def __init__(
        self,
        model_type: ModelType,
        content: str = "fake reply",
        streams_incrementally: bool = True,
        error: Optional[ChatError] = None,
        degraded: bool = False,
    ):
        self.model_type = model_type
        self.content = content
        self.streams_incrementally = streams_incrementally
        self.error = error
        self.degraded = degraded
        self.calls: List[dict] = []

    async def invoke(
        self,
        prompt: str,
        context: Sequence[Turn],
        is_math_related: bool = False,
    ) -> BackendReply:
        self.calls.append({
            "prompt": prompt,
            "context": list(context),
            "is_math_related": is_math_related,
        })
        if self.error is not None:
            raise self.error
        return BackendReply(
            content=self.content,
            model_label=f"fake-{self.model_type.value}",
            degraded=self.degraded,
        )


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_adapters():
    """One fake per backend; the custom one answers in a single chunk."""
    return {
        ModelType.API: FakeAdapter(ModelType.API, content="api reply"),
        ModelType.CUSTOM: FakeAdapter(
            ModelType.CUSTOM, content="custom reply", streams_incrementally=False
        ),
        ModelType.MISTRAL: FakeAdapter(ModelType.MISTRAL, content="mistral reply"),
    }


@pytest.fixture
def adapters(fake_adapters):
    return BackendAdapters(fake_adapters.values())


@pytest.fixture
def app(session_factory, adapters):
    """FastAPI app wired to the test database and fake adapters."""
    from backend.app.api.chat import get_adapter_set, get_db_context_factory
    from backend.app.db.session import get_async_db
    from backend.app.main import create_app

    app = create_app()

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _get_test_db
    app.dependency_overrides[get_db_context_factory] = lambda: session_factory
    app.dependency_overrides[get_adapter_set] = lambda: adapters
    return app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Bearer header for user 1."""
    from backend.app.api.auth import issue_token

    return {"Authorization": f"Bearer {issue_token(1)}"}


@pytest.fixture
def other_auth_headers():
    """Bearer header for user 2."""
    from backend.app.api.auth import issue_token

    return {"Authorization": f"Bearer {issue_token(2)}"}
