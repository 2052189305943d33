"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field

# Header identity mode needs no JWKS endpoint; set before settings are first read.
os.environ["AUTH_MODE"] = "header"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

from sunup.auth.context import CallerIdentity
from sunup.auth.roles import Role
from sunup.config.settings import get_settings
from sunup.events.handlers import build_default_registry
from sunup.models.database import Person, PipelineStage, Tenant, User, UserRole
from sunup.services.pipeline import DEFAULT_STAGES
from sunup.storage.database import get_session, init_db, new_session
from sunup.web.app import create_app
from sunup.web.dependencies import get_event_registry

get_settings.cache_clear()


@dataclass
class Seed:
    """Two tenants with default stages and a handful of users."""

    tenant_a: str
    tenant_b: str
    users: dict[str, User] = field(default_factory=dict)

    def identity(self, subject: str) -> CallerIdentity:
        return CallerIdentity(subject=subject)

    def user_id(self, subject: str) -> str:
        return self.users[subject].id


SEED_USERS: list[tuple[str, str, list[Role]]] = [
    ("admin-a", "a", [Role.SYSTEM_ADMINISTRATOR]),
    ("setter-a", "a", [Role.SETTER]),
    ("manager-a", "a", [Role.SALES_MANAGER]),
    ("installer-a", "a", [Role.INSTALLER]),
    ("recruiter-a", "a", [Role.RECRUITER]),
    ("setter-b", "b", [Role.SETTER]),
    ("manager-b", "b", [Role.SALES_MANAGER]),
]


@pytest.fixture()
async def async_engine(tmp_path):
    """File-backed SQLite engine with all tables created.

    A file database (not :memory:) so the audit logger and event handlers
    can open their own connections alongside the request session.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sunup.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine) -> Callable[[], AsyncSession]:
    return lambda: new_session(async_engine)


@pytest.fixture()
async def seed(session_factory) -> Seed:
    async with session_factory() as session:
        tenant_a = Tenant(name="SunCo Solar", domain="sunco.example")
        tenant_b = Tenant(name="BrightSide Energy", domain="brightside.example")
        session.add_all([tenant_a, tenant_b])
        await session.flush()
        tenants = {"a": tenant_a.id, "b": tenant_b.id}

        for tenant_id in tenants.values():
            session.add_all(
                PipelineStage(
                    name=name,
                    order=order,
                    category=category,
                    description=description,
                    tenant_id=tenant_id,
                )
                for order, (name, category, description) in enumerate(DEFAULT_STAGES, start=1)
            )

        result = Seed(tenant_a=tenants["a"], tenant_b=tenants["b"])
        for subject, tenant_key, roles in SEED_USERS:
            user = User(
                auth_subject=subject,
                email=f"{subject}@example.com",
                first_name=subject.split("-")[0].capitalize(),
                last_name=tenant_key.upper(),
                tenant_id=tenants[tenant_key],
            )
            session.add(user)
            await session.flush()
            session.add_all(
                UserRole(
                    user_id=user.id,
                    role=role.value,
                    is_primary=index == 0,
                    tenant_id=user.tenant_id,
                )
                for index, role in enumerate(roles)
            )
            result.users[subject] = user
        await session.commit()
    return result


@pytest.fixture()
def add_person(session_factory, seed) -> Callable:
    """Insert a person directly, bypassing the service layer."""

    async def _add(
        email: str, stage: str | None = None, tenant: str = "a", first_name: str = "Pat"
    ) -> Person:
        async with session_factory() as session:
            person = Person(
                first_name=first_name,
                last_name="Customer",
                email=email,
                current_pipeline_stage=stage,
                tenant_id=seed.tenant_a if tenant == "a" else seed.tenant_b,
            )
            session.add(person)
            await session.commit()
            return person

    return _add


@pytest.fixture()
def app(session_factory):
    """App wired to the test database."""
    application = create_app()

    async def _session():
        async with session_factory() as session:
            yield session

    registry = build_default_registry(session_factory)
    application.dependency_overrides[get_session] = _session
    application.dependency_overrides[get_event_registry] = lambda: registry
    return application


@pytest.fixture()
async def client(app, seed):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
