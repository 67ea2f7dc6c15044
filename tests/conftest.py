"""
Pytest fixtures for SigBridge testing infrastructure.

This module provides:
1. Environment setup (before any sigbridge import reads settings)
2. Database fixtures (SQLite file database per test, via aiosqlite)
3. Service fixtures wired to in-memory fakes of the remote surfaces
4. Common test data fixtures
"""

import os

os.environ["SIGBRIDGE_ENVIRONMENT"] = "testing"
os.environ["SIGBRIDGE_SECRET_KEY"] = "test-secret-key-for-testing-must-be-32-chars"
os.environ["SIGBRIDGE_DATABASE_URL"] = "sqlite+aiosqlite:///./sigbridge_test.db"

from typing import AsyncGenerator  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from sigbridge.config import Settings  # noqa: E402
from sigbridge.core.database import reset_db_state  # noqa: E402
from sigbridge.models.models import RuleSpec, TenantCredential  # noqa: E402
from sigbridge.models.orm import Base, Organization  # noqa: E402
from sigbridge.services.audit_log import DeploymentAuditLog, reset_audit_log  # noqa: E402
from sigbridge.services.connector_factory import ConnectorFactory  # noqa: E402
from sigbridge.services.token_manager import TokenManager, reset_token_manager  # noqa: E402
from tests.helpers.data import make_credential  # noqa: E402
from tests.helpers.fakes import FakeMailRulesClient, FakeOAuthClient  # noqa: E402


# ==================== SETTINGS ====================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite database."""
    return Settings(
        environment="testing",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'sigbridge.db'}",
        http_timeout_seconds=5,
        deployment_timeout_seconds=5,
    )


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop process-wide singletons between tests."""
    yield
    reset_token_manager()
    reset_audit_log()
    reset_db_state()


# ==================== DATABASE FIXTURES ====================


@pytest_asyncio.fixture
async def async_engine(test_settings):
    """Async engine with the schema created."""
    engine = create_async_engine(
        test_settings.database_url,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A database session for direct assertions."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def org_id(session_factory) -> UUID:
    """An organization row; returns its id."""
    async with session_factory() as session:
        org = Organization(name="Contoso", domain="contoso.com")
        session.add(org)
        await session.commit()
        return org.id


# ==================== SERVICE FIXTURES ====================


@pytest.fixture
def fake_oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def fake_remote() -> FakeMailRulesClient:
    return FakeMailRulesClient()


@pytest.fixture
def token_manager(test_settings, fake_oauth) -> TokenManager:
    return TokenManager(settings=test_settings, oauth_client=fake_oauth)


@pytest.fixture
def audit_log(session_factory) -> DeploymentAuditLog:
    return DeploymentAuditLog(session_factory=session_factory, max_limit=1000)


@pytest.fixture
def connector_factory(test_settings, token_manager, fake_remote, audit_log, session_factory) -> ConnectorFactory:
    return ConnectorFactory(
        token_manager=token_manager,
        client=fake_remote,
        audit_log=audit_log,
        session_factory=session_factory,
        settings=test_settings,
    )


# ==================== TEST DATA FIXTURES ====================


@pytest.fixture
def credential() -> TenantCredential:
    return make_credential()


@pytest.fixture
def connector(connector_factory, credential, org_id):
    """Connector bound to the default test tenant."""
    return connector_factory.build(credential, org_id)


@pytest.fixture
def rule_spec() -> RuleSpec:
    return RuleSpec(
        name="Contoso Signature",
        description="Company-wide disclaimer",
        disclaimer_html='<p>Contoso Ltd &mdash; "Confidential"</p>',
    )
