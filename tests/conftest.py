"""Pytest configuration and fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import time
import uuid
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.auth.security import Principal, get_token_issuer
from src.db.models import AccountRole
from src.db.session import Base, get_db
from src.main import app
from src.services.account_service import account_service
from src.services.identity import (
    IdentityConflict,
    IdentityNotFound,
    IdentityProvider,
    IdentityProviderError,
    InvalidCredentials,
    ProviderIdentity,
    ProviderSession,
    get_identity_provider,
)
from src.services.storage import StorageConflict, StorageError, StorageService, get_storage
from src.services.university_service import university_service
from tests.helpers import PASSWORD, bearer, principal_for, token_for


class FakeIdentityProvider(IdentityProvider):
    """In-memory identity provider."""

    def __init__(self):
        super().__init__(base_url="http://identity.test", anon_key="anon", service_key="service")
        self.users: dict[str, dict] = {}
        self.fail_create: Optional[Exception] = None
        self.fail_delete: Optional[Exception] = None
        self.deleted: list[str] = []

    def _by_email(self, email: str) -> Optional[str]:
        for user_id, user in self.users.items():
            if user["email"] == email:
                return user_id
        return None

    async def create_user(self, email, password, email_confirm=True, metadata=None):
        if self.fail_create is not None:
            raise self.fail_create
        if self._by_email(email):
            raise IdentityConflict("already registered", status_code=422, code="email_exists")
        user_id = str(uuid.uuid4())
        self.users[user_id] = {"email": email, "password": password, "metadata": metadata}
        return ProviderIdentity(id=user_id, email=email)

    async def delete_user(self, user_id):
        if self.fail_delete is not None:
            raise self.fail_delete
        if user_id not in self.users:
            raise IdentityNotFound("user not found", status_code=404, code="user_not_found")
        del self.users[user_id]
        self.deleted.append(user_id)

    async def sign_in_with_password(self, email, password):
        user_id = self._by_email(email)
        if user_id is None or self.users[user_id]["password"] != password:
            raise InvalidCredentials("bad credentials", status_code=400, code="invalid_credentials")
        return ProviderSession(
            access_token=f"provider-{user_id}",
            user=ProviderIdentity(id=user_id, email=email),
        )

    async def sign_out(self, access_token):
        return None

    async def reset_password_for_email(self, email, redirect_to):
        if self._by_email(email) is None:
            raise IdentityNotFound("user not found", status_code=404, code="user_not_found")

    async def update_user_password(self, access_token, password):
        user_id = access_token.removeprefix("provider-")
        if user_id not in self.users:
            raise IdentityProviderError("bad token", status_code=401, code="bad_jwt")
        self.users[user_id]["password"] = password
        return ProviderIdentity(id=user_id, email=self.users[user_id]["email"])


class FakeStorage(StorageService):
    """In-memory object storage with failure injection."""

    def __init__(self):
        super().__init__(bucket="graduate-record", public_base_url="http://storage.test")
        self.objects: dict[str, bytes] = {}
        self.fail_upload_on: Optional[str] = None
        self.fail_remove = False
        self.fail_sign = False
        self.calls: list[tuple[str, str]] = []

    def upload(self, path, content, content_type, upsert=False):
        self.calls.append(("upload", path))
        if self.fail_upload_on and self.fail_upload_on in path:
            raise StorageError(f"Upload failed for {path}")
        if not upsert and path in self.objects:
            raise StorageConflict(f"Object already exists: {path}")
        self.objects[path] = content
        return path

    def download(self, path):
        if path not in self.objects:
            raise StorageError(f"Download failed for {path}")
        return self.objects[path]

    def remove(self, paths):
        paths = list(paths)
        self.calls.append(("remove", ",".join(paths)))
        if self.fail_remove:
            raise StorageError("Remove failed")
        for path in paths:
            self.objects.pop(path, None)

    def signed_url(self, path, expires_in=3600):
        if self.fail_sign:
            raise StorageError(f"Could not sign URL for {path}")
        return f"{self.public_url(path)}?X-Amz-Expires={expires_in}"

    def health_check(self):
        return True


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh test database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_maker, identity, storage) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def platform_admin(db_session, identity):
    """A platform admin account with its profile."""
    return await account_service.create_delegated_account(
        db_session,
        identity,
        AccountRole.PLATFORM_ADMIN,
        "root@platform.test",
        PASSWORD,
        {"first_name": "Root", "last_name": "Admin"},
    )


@pytest.fixture
def admin_headers(platform_admin) -> dict:
    return bearer(token_for(platform_admin, AccountRole.PLATFORM_ADMIN))


@pytest_asyncio.fixture
async def university(db_session, platform_admin):
    return await university_service.create_university(
        db_session,
        {
            "name": "Test University",
            "short_name": "Test U",
            "email": "registrar@testu.edu",
            "country": "X",
            "city": "Y",
        },
        principal_for(platform_admin),
    )


@pytest_asyncio.fixture
async def university_admin(db_session, identity, university, platform_admin):
    return await account_service.create_delegated_account(
        db_session,
        identity,
        AccountRole.UNIVERSITY_ADMIN,
        "ua@testu.edu",
        PASSWORD,
        {"first_name": "Uni", "last_name": "Admin", "university_id": university.id},
        created_by=platform_admin.account.id,
    )


@pytest.fixture
def ua_headers(university_admin) -> dict:
    return bearer(token_for(university_admin, AccountRole.UNIVERSITY_ADMIN))


@pytest.fixture
def ua_principal(university_admin, university) -> Principal:
    return principal_for(university_admin, university.id)


@pytest.fixture
def near_expiry():
    """A ``now`` that leaves a token for ``role`` one minute of life."""

    def _now(role: AccountRole) -> float:
        return time.time() - get_token_issuer().ttl_for(role.value) + 60

    return _now
