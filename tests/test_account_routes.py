"""API tests for account deletion, profile link clicks and health."""

from unittest.mock import MagicMock

from linket_api.db.models import TAG_CLAIMED, TAG_UNCLAIMED, HardwareTag, ProfileLink, TagAssignment
from linket_api.db.session import get_optional_session_factory
from linket_api.main import app
from linket_api.supabase_client import get_supabase_admin_client

USER = "user-a"


def _admin_client(fail: bool = False) -> MagicMock:
    client = MagicMock()
    if fail:
        client.auth.admin.delete_user.side_effect = RuntimeError("auth provider down")
    app.dependency_overrides[get_supabase_admin_client] = lambda: client
    return client


class TestAccountDelete:
    def test_requires_session(self, test_client) -> None:
        _admin_client()

        assert test_client.post("/api/account/delete").status_code == 401

    def test_releases_tags_then_deletes_user(
        self, test_client, factory, auth_state, purger, db_session
    ) -> None:
        client = _admin_client()
        first = factory.tag(status=TAG_CLAIMED, public_token="accttoken001")
        second = factory.tag(status=TAG_CLAIMED, public_token="accttoken002")
        factory.assignment(first, USER)
        factory.assignment(second, USER)
        auth_state.login(USER)

        response = test_client.post("/api/account/delete")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "releasedTags": 2}
        client.auth.admin.delete_user.assert_called_once_with(USER)
        assert sorted(purger.tokens) == ["accttoken001", "accttoken002"]

        db_session.expire_all()
        for tag in (first, second):
            # Tags survive the account, back in the unclaimed pool
            assert db_session.get(HardwareTag, tag.id).status == TAG_UNCLAIMED
        assert db_session.query(TagAssignment).count() == 0

    def test_auth_provider_failure_is_500(self, test_client, auth_state) -> None:
        _admin_client(fail=True)
        auth_state.login(USER)

        response = test_client.post("/api/account/delete")

        assert response.status_code == 500
        assert response.json()["error"] == "Unable to delete account. Please try again."

    def test_auth_provider_failure_keeps_tags_claimed(
        self, test_client, factory, auth_state, purger, db_session
    ) -> None:
        client = _admin_client(fail=True)
        tag = factory.tag(status=TAG_CLAIMED, public_token="accttoken003")
        assignment = factory.assignment(tag, USER)
        tag_id, assignment_id = tag.id, assignment.id
        auth_state.login(USER)

        response = test_client.post("/api/account/delete")

        assert response.status_code == 500
        client.auth.admin.delete_user.assert_called_once_with(USER)
        assert purger.tokens == []

        db_session.expire_all()
        assert db_session.get(HardwareTag, tag_id).status == TAG_CLAIMED
        kept = db_session.get(TagAssignment, assignment_id)
        assert kept is not None
        assert kept.user_id == USER


class TestProfileLinkClick:
    def test_increments_click_count(self, test_client, factory, db_session) -> None:
        profile = factory.profile(USER)
        link = factory.link(profile, "https://example.com")

        for _ in range(2):
            response = test_client.post("/api/profile-links/click", json={"linkId": link.id})
            assert response.status_code == 200
            assert response.json() == {"ok": True}

        db_session.expire_all()
        assert db_session.get(ProfileLink, link.id).click_count == 2

    def test_missing_link_id_is_400(self, test_client) -> None:
        response = test_client.post("/api/profile-links/click", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "linkId is required"

    def test_unconfigured_store_accepts_click(self, test_client) -> None:
        app.dependency_overrides[get_optional_session_factory] = lambda: None

        response = test_client.post("/api/profile-links/click", json={"linkId": "abc"})

        assert response.status_code == 200


class TestHealth:
    def test_healthy_with_database(self, test_client) -> None:
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"database": "up", "redis": "unconfigured"}

    def test_unconfigured_database_is_not_an_outage(self, test_client) -> None:
        app.dependency_overrides[get_optional_session_factory] = lambda: None

        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["services"]["database"] == "unconfigured"
