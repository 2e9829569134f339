"""API tests for claim and dashboard endpoints."""

from unittest.mock import MagicMock

import redis

from linket_api.db.models import TAG_CLAIMED, TAG_UNCLAIMED, TARGET_URL, HardwareTag, TagAssignment
from linket_api.db.session import get_session_factory
from linket_api.errors import UnconfiguredError
from linket_api.main import app
from linket_api.rate_limiter import RateLimitResult, get_rate_limiter

USER_A = "user-a"
USER_B = "user-b"


def _claim(test_client, **body):
    return test_client.post("/api/linkets/claim", json=body)


class TestClaimEndpoint:
    def test_requires_session(self, test_client, factory) -> None:
        factory.tag(claim_code="SESSIONLESS2")

        response = _claim(test_client, claimCode="SESSIONLESS2")

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/problem+json")

    def test_claim_success_purges_cache(
        self, test_client, factory, auth_state, purger, side_effects, db_session
    ) -> None:
        tag = factory.tag(public_token="purgeme00001", claim_code="AB12CD34EF56")
        factory.profile(USER_A)
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode="ab12-cd34-ef56", nickname="Keys")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["assignmentId"]
        assert purger.tokens == ["purgeme00001"]
        assert ("cache_purge", "ok") in side_effects

        db_session.expire_all()
        assert db_session.get(HardwareTag, tag.id).status == TAG_CLAIMED
        assert db_session.get(TagAssignment, body["assignmentId"]).nickname == "Keys"

    def test_second_claim_conflicts(self, test_client, factory, auth_state) -> None:
        factory.tag(claim_code="CONFLICTS234")
        auth_state.login(USER_A)
        assert _claim(test_client, claimCode="CONFLICTS234").status_code == 200

        auth_state.login(USER_B)
        response = _claim(test_client, claimCode="CONFLICTS234")

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == 409
        assert body["error"]
        assert body["instance"].startswith("urn:linket:trace:")

    def test_unknown_code(self, test_client, auth_state) -> None:
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode="ZZZZ-ZZZZ-ZZZZ")

        assert response.status_code == 404
        assert response.json()["error"] == "We couldn't find a Linket with that code."

    def test_blank_code(self, test_client, auth_state) -> None:
        auth_state.login(USER_A)

        assert _claim(test_client, claimCode="   ").status_code == 400
        assert _claim(test_client).status_code == 400

    def test_chip_uid_and_token_fields(self, test_client, factory, auth_state) -> None:
        factory.tag(chip_uid="CHIPFIELD01")
        factory.tag(public_token="tokenfield01")
        auth_state.login(USER_A)

        assert _claim(test_client, chipUid="CHIPFIELD01").status_code == 200
        assert _claim(test_client, token="tokenfield01").status_code == 200

    def test_malformed_body_is_400(self, test_client, auth_state) -> None:
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode=["not", "a", "string"])

        assert response.status_code == 400
        assert response.json()["error"] == "bad_input"

    def test_rate_limited(self, test_client, factory, auth_state) -> None:
        factory.tag(claim_code="RATELIMIT234")
        limiter = MagicMock()
        limiter.check_rate_limit.return_value = RateLimitResult(
            allowed=False, policy_id="claim", quota=5, window=60, remaining=0, reset=42
        )
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode="RATELIMIT234")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["RateLimit-Policy"] == '"claim"; q=5; w=60'
        assert response.headers["RateLimit"] == '"claim"; r=0; t=42'
        limiter.check_rate_limit.assert_called_once()
        assert limiter.check_rate_limit.call_args.args[1] == "claim"

    def test_rate_limit_store_outage_allows_claim(self, test_client, factory, auth_state) -> None:
        factory.tag(claim_code="REDISDOWN234")
        limiter = MagicMock()
        limiter.check_rate_limit.side_effect = redis.ConnectionError("connection refused")
        app.dependency_overrides[get_rate_limiter] = lambda: limiter
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode="REDISDOWN234")

        assert response.status_code == 200

    def test_unconfigured_store(self, test_client, auth_state) -> None:
        def unconfigured():
            raise UnconfiguredError("Linkets service is not configured.")

        app.dependency_overrides[get_session_factory] = unconfigured
        auth_state.login(USER_A)

        response = _claim(test_client, claimCode="ANYCODE23456")

        assert response.status_code == 500
        assert response.json()["error"] == "Linkets service is not configured."


class TestDashboard:
    def test_list_requires_session(self, test_client) -> None:
        assert test_client.get("/api/dashboard/linkets").status_code == 401

    def test_list_own_linkets_and_profiles(self, test_client, factory, auth_state) -> None:
        profile = factory.profile(USER_A, handle="maya")
        mine = factory.tag(status=TAG_CLAIMED, public_token="minetoken001")
        theirs = factory.tag(status=TAG_CLAIMED, public_token="theirtoken01")
        factory.assignment(mine, USER_A, profile_id=profile.id, nickname="Keys")
        factory.assignment(theirs, USER_B)
        auth_state.login(USER_A)

        response = test_client.get("/api/dashboard/linkets")

        assert response.status_code == 200
        body = response.json()
        assert [item["token"] for item in body["linkets"]] == ["minetoken001"]
        assert body["linkets"][0]["nickname"] == "Keys"
        assert [item["handle"] for item in body["profiles"]] == ["maya"]

    def test_patch_url_target(self, test_client, factory, auth_state, purger, db_session) -> None:
        tag = factory.tag(status=TAG_CLAIMED, public_token="patchtoken01")
        assignment = factory.assignment(tag, USER_A)
        auth_state.login(USER_A)

        response = test_client.patch(
            f"/api/dashboard/linkets/{assignment.id}",
            json={"target_type": "url", "target_url": "https://example.com/menu"},
        )

        assert response.status_code == 200
        assert response.json()["assignmentId"] == assignment.id
        assert purger.tokens == ["patchtoken01"]
        db_session.expire_all()
        stored = db_session.get(TagAssignment, assignment.id)
        assert stored.target_type == TARGET_URL
        assert stored.target_url == "https://example.com/menu"

    def test_patch_nickname_twice_is_idempotent(self, test_client, factory, auth_state) -> None:
        tag = factory.tag(status=TAG_CLAIMED)
        assignment = factory.assignment(tag, USER_A)
        auth_state.login(USER_A)

        for _ in range(2):
            response = test_client.patch(
                f"/api/dashboard/linkets/{assignment.id}", json={"nickname": "Bag"}
            )
            assert response.status_code == 200

    def test_patch_relative_url_is_400(self, test_client, factory, auth_state) -> None:
        tag = factory.tag(status=TAG_CLAIMED)
        assignment = factory.assignment(tag, USER_A)
        auth_state.login(USER_A)

        response = test_client.patch(
            f"/api/dashboard/linkets/{assignment.id}",
            json={"target_type": "url", "target_url": "example.com/menu"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Target URL must be an absolute http(s) URL."

    def test_patch_unknown_target_type_is_400(self, test_client, factory, auth_state) -> None:
        tag = factory.tag(status=TAG_CLAIMED)
        assignment = factory.assignment(tag, USER_A)
        auth_state.login(USER_A)

        response = test_client.patch(
            f"/api/dashboard/linkets/{assignment.id}", json={"target_type": "page"}
        )

        assert response.status_code == 400

    def test_patch_other_users_assignment_is_403(self, test_client, factory, auth_state) -> None:
        tag = factory.tag(status=TAG_CLAIMED)
        assignment = factory.assignment(tag, USER_B)
        auth_state.login(USER_A)

        response = test_client.patch(
            f"/api/dashboard/linkets/{assignment.id}", json={"nickname": "mine now"}
        )

        assert response.status_code == 403

    def test_delete_releases_tag(self, test_client, factory, auth_state, purger, db_session) -> None:
        tag = factory.tag(status=TAG_CLAIMED, public_token="releasetok01")
        assignment = factory.assignment(tag, USER_A)
        tag_id, assignment_id = tag.id, assignment.id
        auth_state.login(USER_A)

        response = test_client.delete(f"/api/dashboard/linkets/{assignment_id}")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert purger.tokens == ["releasetok01"]
        db_session.expire_all()
        assert db_session.get(HardwareTag, tag_id).status == TAG_UNCLAIMED
        assert db_session.get(TagAssignment, assignment_id) is None

    def test_delete_other_users_assignment_is_403(self, test_client, factory, auth_state) -> None:
        tag = factory.tag(status=TAG_CLAIMED)
        assignment = factory.assignment(tag, USER_B)
        auth_state.login(USER_A)

        assert test_client.delete(f"/api/dashboard/linkets/{assignment.id}").status_code == 403

    def test_delete_unknown_assignment_is_404(self, test_client, auth_state) -> None:
        auth_state.login(USER_A)

        assert test_client.delete("/api/dashboard/linkets/missing").status_code == 404
