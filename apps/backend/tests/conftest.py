"""Test fixtures and configuration."""

import logging
import os
import sys
from collections.abc import Callable

import httpx
import pytest
import pytest_asyncio
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Settings are read at import time; pin the environment before importing the package.
os.environ["ENVIRONMENT"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.pop("DMS_PROVIDERS_FILE", None)

from case_portal.logger import get_logger  # noqa: E402
from case_portal.schemas.dms import DmsProviderConfig  # noqa: E402
from case_portal.services.notifications import NotificationEvent  # noqa: E402
from case_portal.services.record_store import RecordStore  # noqa: E402
from case_portal.services.retry import RetryPolicy  # noqa: E402
from case_portal.services.sync_lease import SyncLease  # noqa: E402
from case_portal.services.sync_trigger import SyncEnvironment  # noqa: E402
from case_portal.services.token_provider import TokenProvider  # noqa: E402

logger = get_logger(__name__)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory schema per test.

    StaticPool keeps the single SQLite connection alive for the engine's
    lifetime so every session sees the same database.
    """
    from case_portal import models  # noqa: F401
    from case_portal.database import Base

    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(db_engine):
    """Session maker bound to the test engine, also installed for background jobs."""
    from case_portal import database

    maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    previous = database.set_test_session_maker(maker)
    yield maker
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def store(db) -> RecordStore:
    return RecordStore(db)


class RecordingDispatcher:
    """Dispatcher that keeps every event it receives."""

    def __init__(self, fail: bool = False) -> None:
        self.events: list[NotificationEvent] = []
        self.fail = fail

    async def dispatch(self, event: NotificationEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("dispatcher down")


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def lease() -> SyncLease:
    return SyncLease(ttl_seconds=60, redis_url="")


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def api_key_provider_config() -> Callable[..., DmsProviderConfig]:
    def build(provider: str = "filenet", name: str = "filenet-main", **options) -> DmsProviderConfig:
        defaults = {
            "sharepoint": {"drive_id": "drive-1", "list_id": "list-1", "folder": "Cases"},
            "filenet": {"object_store": "OS1", "folder": "/Cases"},
            "documentum": {"repository": "repo1", "folder_id": "0b01"},
        }[provider]
        return DmsProviderConfig.model_validate(
            {
                "name": name,
                "provider": provider,
                "base_url": "https://dms.example.gov/api",
                "auth": {"type": "api_key", "api_key": "secret-key"},
                "page_size": 2,
                "options": {**defaults, **options},
            }
        )

    return build


def make_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def token_provider_factory() -> Callable[[httpx.AsyncClient], TokenProvider]:
    def build(client: httpx.AsyncClient) -> TokenProvider:
        return TokenProvider(client, refresh_margin_seconds=60)

    return build


class StaticBlobReader:
    """Blob reader that returns the same bytes for every key."""

    async def read(self, storage_key: str) -> bytes:
        return b"%PDF-1.7 test"


class FileNetStub:
    """Minimal FileNet REST endpoint: accepts uploads and lists seeded documents."""

    def __init__(self) -> None:
        self.documents: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.malformed_uploads: set[int] = set()
        self.uploads = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        if request.method == "POST":
            self.uploads += 1
            if self.uploads in self.malformed_uploads:
                return httpx.Response(201, json={"unexpected": True})
            external_id = f"F-{len(self.requests)}"
            return httpx.Response(
                201, json={"id": external_id, "url": f"https://dms.example.gov/docs/{external_id}"}
            )
        return httpx.Response(200, json={"documents": self.documents, "hasMore": False})


@pytest.fixture
def filenet() -> FileNetStub:
    return FileNetStub()


@pytest_asyncio.fixture
async def sync_env(filenet, api_key_provider_config, lease, dispatcher, fast_retry):
    """Sync collaborators wired to the FileNet stub as system ``filenet-main``."""
    http_client = make_http_client(filenet)
    env = SyncEnvironment(
        providers={"filenet-main": api_key_provider_config()},
        http_client=http_client,
        token_provider=TokenProvider(http_client),
        lease=lease,
        blob_reader=StaticBlobReader(),
        dispatcher=dispatcher,
        retry_policy=fast_retry,
    )
    yield env
    await env.aclose()


@pytest_asyncio.fixture
async def client(db, sync_env):
    """API client sharing the test session; lifespan does not run under ASGITransport."""
    from case_portal.database import get_db
    from case_portal.main import app

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.sync_env = sync_env
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
