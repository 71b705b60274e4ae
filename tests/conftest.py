"""Test fixtures: a fresh SQLite file per test and an HTTP client bound to it.

Every request gets its own session from the test sessionmaker, exactly like
get_db does in production, so commits made by one request are visible to the
next one and nothing is shared between tests.
"""
import os

# Must be set before the app (and its config module) is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "0"

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import insert, select  # noqa: E402

from app.core.database.engine import build_engine, build_sessionmaker, get_db, init_db  # noqa: E402
from app.features.permissions.models import Role, user_roles  # noqa: E402
from app.features.users.auth import hash_password, issue_session_token  # noqa: E402
from app.features.users.models import User  # noqa: E402
from app.main import app  # noqa: E402
from scripts.seed_rbac import seed_permissions, seed_role_permissions, seed_roles  # noqa: E402


DEFAULT_PASSWORD = "Passw0rd1"


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture()
async def db(session_factory):
    """A session for tests that call the resolver functions directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(session_factory):
    """HTTP client with get_db pointed at the per-test database."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def rbac(session_factory):
    """Seed the default roles, permissions and mappings; return their ids by name."""
    async with session_factory() as session:
        roles = await seed_roles(session)
        permissions = await seed_permissions(session)
        await seed_role_permissions(session, roles, permissions)

    return SimpleNamespace(
        roles={name: role.id for name, role in roles.items()},
        permissions={name: permission.id for name, permission in permissions.items()},
    )


@pytest_asyncio.fixture()
async def make_user(session_factory):
    """Factory creating a user directly in the database with the given role names."""
    async def _make_user(email: str, roles=(), password: str = DEFAULT_PASSWORD) -> User:
        async with session_factory() as session:
            user = User(email=email, password_hash=hash_password(password))
            session.add(user)
            await session.flush()
            for name in roles:
                role_id = (await session.execute(select(Role.id).where(Role.name == name))).scalar_one()
                await session.execute(insert(user_roles).values(user_id=user.id, role_id=role_id))
            await session.commit()
            return user

    return _make_user


def _auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {issue_session_token(user.id, user.email)}"}


@pytest.fixture()
def auth_headers():
    """Bearer headers for a user, signed the same way /auth/login does it."""
    return _auth_headers


@pytest_asyncio.fixture()
async def admin(rbac, make_user):
    return await make_user("admin@example.com", roles=["admin"])


@pytest_asyncio.fixture()
async def editor(rbac, make_user):
    return await make_user("editor@example.com", roles=["editor"])


@pytest_asyncio.fixture()
async def viewer(rbac, make_user):
    return await make_user("viewer@example.com", roles=["viewer"])
