"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from docintake import models  # noqa: E402,F401
from docintake.api.deps import get_processing_orchestrator  # noqa: E402
from docintake.core.config import settings  # noqa: E402
from docintake.core.database import Base, get_db, session_scope  # noqa: E402
from docintake.services import document_store  # noqa: E402
from docintake.services.processing_orchestrator import ProcessingOrchestrator  # noqa: E402
from docintake.services.providers.local import KeywordAnalysisProvider, LocalOCRProvider  # noqa: E402
from docintake.services.retry import RetryPolicy  # noqa: E402
from docintake.utils.file_handling import calculate_sha256  # noqa: E402
from helpers import W2_TEXT, no_sleep  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Uploads land in a per-test bucket; alert thresholds use their defaults."""
    bucket = tmp_path / "bucket"
    bucket.mkdir()
    monkeypatch.setattr(settings, "BUCKET_DIR", bucket)
    monkeypatch.setattr(settings, "ALERT_REVIEW_CONFIDENCE_THRESHOLD", None)
    monkeypatch.setattr(settings, "ALERT_DEADLINE_HORIZON_DAYS", 7)
    monkeypatch.setattr(settings, "DEFAULT_TAX_YEAR", None)
    return bucket


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, initial_delay=0.01, sleep=no_sleep)


@pytest.fixture
def make_orchestrator(session_factory, retry_policy):
    """Build an orchestrator on the test database. Local text providers by default."""

    def _make(**overrides):
        options = dict(
            session_factory=session_factory,
            ocr_provider=LocalOCRProvider(),
            analysis_provider=KeywordAnalysisProvider(),
            retry_policy=retry_policy,
            stage_timeout=2.0,
            lease_ttl=60,
            stale_after=600,
            review_threshold=None,
        )
        options.update(overrides)
        return ProcessingOrchestrator(**options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def store_document(session_factory, isolated_settings):
    """Write a text file for a client and record it as a pending document. Returns the document."""
    counter = {"n": 0}

    async def _store(client_id="client-1", text=W2_TEXT, name=None, category=None, parent_document_id=None):
        counter["n"] += 1
        name = name or f"document-{counter['n']}.txt"
        folder = isolated_settings / client_id
        folder.mkdir(exist_ok=True)
        path = folder / name
        path.write_text(text)
        async with session_scope(session_factory) as session:
            return await document_store.create_document(
                session,
                client_id=client_id,
                name=name,
                mime_type="text/plain",
                size_bytes=len(text.encode()),
                storage_url=str(path),
                sha256=calculate_sha256(text.encode()),
                category=category,
                parent_document_id=parent_document_id,
            )

    return _store


@pytest_asyncio.fixture
async def client(session_factory, orchestrator):
    """HTTP client against the app with the test database and orchestrator wired in."""
    from main import app

    async def override_get_db():
        async with session_scope(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_processing_orchestrator] = lambda: orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    await orchestrator.drain()
    app.dependency_overrides.clear()


