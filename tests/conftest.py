"""
Pytest configuration and fixtures for backend tests.
"""
import os
import sys
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# 数据库引擎在导入时创建，环境变量必须先于应用模块设置
_BOOT_DIR = tempfile.mkdtemp(prefix="photo_drop_boot_")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_BOOT_DIR, 'boot.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_BOOT_DIR, "uploads"))

from app.core.config import Settings, get_settings  # noqa: E402
from app.core.database import Base, create_db_engine, get_db, get_session_factory  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.models import Role, User, UserStatus  # noqa: E402
from main import app  # noqa: E402


@pytest.fixture(scope="function")
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test database file and upload directory."""
    return Settings(
        JWT_SECRET="test-secret",
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
    )


@pytest.fixture(scope="function")
def session_factory(settings: Settings):
    """File-backed SQLite so request, audit and ledger sessions see the same data."""
    engine = create_db_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Session used by tests to seed and inspect rows."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(settings: Settings, session_factory) -> TestClient:
    """Create a test client with overridden database, session factory and settings."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _make_user(db: Session, username: str, role: Role, status: UserStatus = UserStatus.ACTIVE) -> User:
    user = User(
        username=username,
        password="not-used",
        role=role.value,
        status=status.value,
        disableReason="seeded" if status is UserStatus.DISABLED else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def users(db_session: Session) -> dict:
    """Seed one account per role; the admin is created first so it gets id 1."""
    return {
        "admin": _make_user(db_session, "admin", Role.ADMIN),
        "sub_admin": _make_user(db_session, "sub_admin", Role.SUB_ADMIN),
        "other_sub_admin": _make_user(db_session, "sub_admin_2", Role.SUB_ADMIN),
        "merchant": _make_user(db_session, "merchant", Role.MERCHANT),
        "other_merchant": _make_user(db_session, "merchant_2", Role.MERCHANT),
        "disabled_merchant": _make_user(db_session, "merchant_off", Role.MERCHANT, UserStatus.DISABLED),
        "customer": _make_user(db_session, "alice", Role.CUSTOMER),
        "other_customer": _make_user(db_session, "bob", Role.CUSTOMER),
    }


@pytest.fixture
def auth_headers(settings: Settings):
    """Build bearer headers for a seeded user."""
    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)}, settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def upload(client: TestClient, auth_headers):
    """Upload files as a customer to a merchant and return the response."""
    def _upload(customer: User, merchant: User, files: list[tuple[str, bytes, str]], **form):
        data = {"merchantId": str(merchant.id)}
        data.update({key: str(value) for key, value in form.items()})
        return client.post(
            "/api/upload",
            headers=auth_headers(customer),
            data=data,
            files=[("files", (name, content, mime)) for name, content, mime in files],
        )

    return _upload


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Small payload that stands in for an image body."""
    return b"\xff\xd8\xff\xe0" + b"photo-drop" * 64
