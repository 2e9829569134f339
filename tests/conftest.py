"""Pytest configuration and fixtures."""

import uuid
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from linket_api.auth.session_auth import SessionUser, get_current_user
from linket_api.cache_purge import get_cache_purger
from linket_api.config.settings import Settings, get_settings
from linket_api.db.engine import build_engine, build_sessionmaker
from linket_api.db.models import (
    TAG_UNCLAIMED,
    TARGET_PROFILE,
    AdminUser,
    Base,
    HardwareTag,
    ProfileLink,
    TagAssignment,
    UserProfile,
)
from linket_api.db.session import get_optional_session_factory, get_session_factory
from linket_api.errors import UnauthorizedError
from linket_api.main import app
from linket_api.rate_limiter import NoOpRateLimiter, get_rate_limiter
from linket_api.tasks import DetachedTaskRunner

SITE_ORIGIN = "https://linket.test"


class FakePurger:
    """Records purged tokens instead of calling the purge endpoint."""

    def __init__(self):
        self.tokens: list[str] = []

    async def purge(self, public_token: Optional[str]) -> bool:
        self.tokens.append(public_token)
        return True


class AuthState:
    """Which user the overridden get_current_user returns (None -> 401)."""

    def __init__(self):
        self.user_id: Optional[str] = None

    def login(self, user_id: str) -> str:
        self.user_id = user_id
        return user_id

    def logout(self) -> None:
        self.user_id = None


class Factory:
    """Row builders for tests."""

    def __init__(self, db: Session):
        self.db = db

    def tag(
        self,
        status: str = TAG_UNCLAIMED,
        public_token: Optional[str] = None,
        claim_code: Optional[str] = None,
        chip_uid: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> HardwareTag:
        tag = HardwareTag(
            public_token=public_token or f"tok{uuid.uuid4().hex[:9]}",
            claim_code=claim_code,
            chip_uid=chip_uid,
            status=status,
            batch_id=batch_id,
        )
        self.db.add(tag)
        self.db.commit()
        return tag

    def profile(
        self,
        user_id: str,
        handle: Optional[str] = None,
        is_active: bool = True,
    ) -> UserProfile:
        profile = UserProfile(
            user_id=user_id,
            handle=handle or f"h{uuid.uuid4().hex[:8]}",
            name="Test Profile",
            is_active=is_active,
        )
        self.db.add(profile)
        self.db.commit()
        return profile

    def link(
        self,
        profile: UserProfile,
        url: str,
        order_index: int = 0,
        is_override: bool = False,
        is_active: bool = True,
    ) -> ProfileLink:
        link = ProfileLink(
            profile_id=profile.id,
            user_id=profile.user_id,
            title="Link",
            url=url,
            order_index=order_index,
            is_override=is_override,
            is_active=is_active,
        )
        self.db.add(link)
        self.db.commit()
        return link

    def assignment(
        self,
        tag: HardwareTag,
        user_id: str,
        profile_id: Optional[str] = None,
        target_type: str = TARGET_PROFILE,
        target_url: Optional[str] = None,
        nickname: Optional[str] = None,
    ) -> TagAssignment:
        assignment = TagAssignment(
            tag_id=tag.id,
            user_id=user_id,
            profile_id=profile_id,
            target_type=target_type,
            target_url=target_url,
            nickname=nickname,
        )
        self.db.add(assignment)
        self.db.commit()
        return assignment

    def admin(self, user_id: str) -> AdminUser:
        admin = AdminUser(user_id=user_id)
        self.db.add(admin)
        self.db.commit()
        return admin


@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    """File-backed SQLite, so detached side effects can use their own connections."""
    return f"sqlite:///{tmp_path / 'linket_test.db'}"


@pytest.fixture(scope="function")
def session_factory(database_url: str) -> sessionmaker[Session]:
    engine = build_engine(database_url)
    Base.metadata.create_all(engine)
    try:
        yield build_sessionmaker(engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory: sessionmaker[Session]) -> Session:
    """Fresh session for arranging and asserting rows."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def factory(db_session: Session) -> Factory:
    return Factory(db_session)


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    return Settings(
        environment="test",
        site_origin=SITE_ORIGIN,
        database_url=database_url,
        supabase_url="https://project.supabase.co",
        supabase_publishable_key="test-publishable",
        supabase_secret_key="test-secret",
        client_id_pepper="test-pepper",
        side_effect_timeout_seconds=2.0,
        json_logs=False,
    )


@pytest.fixture
def auth_state() -> AuthState:
    return AuthState()


@pytest.fixture
def purger() -> FakePurger:
    return FakePurger()


@pytest.fixture
def side_effects() -> list[tuple[str, str]]:
    """(name, outcome) of every detached job that finished during the test."""
    return []


@pytest.fixture
def task_runner(side_effects: list[tuple[str, str]]) -> DetachedTaskRunner:
    runner = DetachedTaskRunner(timeout_seconds=2.0)
    runner.add_listener(lambda name, outcome: side_effects.append((name, outcome)))
    return runner


@pytest.fixture
def test_client(
    session_factory: sessionmaker[Session],
    test_settings: Settings,
    auth_state: AuthState,
    purger: FakePurger,
    task_runner: DetachedTaskRunner,
):
    """TestClient with store, settings, auth, limiter and purger overridden."""

    def override_current_user() -> SessionUser:
        if auth_state.user_id is None:
            raise UnauthorizedError()
        return SessionUser(user_id=auth_state.user_id)

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_optional_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = override_current_user
    app.dependency_overrides[get_rate_limiter] = lambda: NoOpRateLimiter()
    app.dependency_overrides[get_cache_purger] = lambda: purger

    previous_runner = getattr(app.state, "task_runner", None)
    app.state.task_runner = task_runner

    client = TestClient(app)
    yield client

    app.dependency_overrides.clear()
    app.state.task_runner = previous_runner
