"""API tests for admin tag retirement."""

from linket_api.db.models import EVENT_RETIRE, TAG_CLAIMED, TAG_RETIRED, HardwareTag
from linket_api.db.repo_tags import TagEventRepository

SITE_ORIGIN = "https://linket.test"
ADMIN = "admin-1"
OWNER = "owner-1"


def _retire(test_client, tag_id: str):
    return test_client.post(f"/api/admin/tags/{tag_id}/retire")


def _claimed_tag(factory, token: str, claim_code: str):
    tag = factory.tag(status=TAG_CLAIMED, public_token=token, claim_code=claim_code)
    factory.profile(OWNER, handle="keeper")
    factory.assignment(tag, OWNER)
    return tag


def test_retire_requires_session(test_client, factory) -> None:
    tag = factory.tag()

    assert _retire(test_client, tag.id).status_code == 401


def test_retire_requires_admin(test_client, factory, auth_state, db_session) -> None:
    tag = factory.tag()
    tag_id = tag.id
    auth_state.login(OWNER)

    assert _retire(test_client, tag_id).status_code == 403
    db_session.expire_all()
    assert db_session.get(HardwareTag, tag_id).status != TAG_RETIRED


def test_retired_tag_still_resolves_and_cannot_be_claimed(
    test_client, factory, auth_state, purger, side_effects, db_session
) -> None:
    tag = _claimed_tag(factory, "retiretok001", "RETIREME2345")
    tag_id = tag.id
    factory.admin(ADMIN)
    auth_state.login(ADMIN)

    response = _retire(test_client, tag_id)

    assert response.status_code == 200
    assert response.json() == {"ok": True, "tagId": tag_id, "status": TAG_RETIRED}
    assert purger.tokens == ["retiretok001"]
    assert ("cache_purge", "ok") in side_effects

    scan = test_client.get("/l/retiretok001", follow_redirects=False)
    assert scan.status_code == 302
    assert scan.headers["location"] == f"{SITE_ORIGIN}/keeper"

    auth_state.login("someone-else")
    claim = test_client.post("/api/linkets/claim", json={"claimCode": "RETIREME2345"})
    assert claim.status_code == 409

    db_session.expire_all()
    assert db_session.get(HardwareTag, tag_id).status == TAG_RETIRED
    events = TagEventRepository(db_session).list_for_tag(tag_id)
    assert [event.event_type for event in events if event.event_type == EVENT_RETIRE] == [
        EVENT_RETIRE
    ]


def test_retire_twice_is_conflict(test_client, factory, auth_state) -> None:
    tag = factory.tag(status=TAG_RETIRED)
    factory.admin(ADMIN)
    auth_state.login(ADMIN)

    response = _retire(test_client, tag.id)

    assert response.status_code == 409
    assert response.json()["error"] == "This Linket is already retired."


def test_retire_unknown_tag_is_404(test_client, factory, auth_state) -> None:
    factory.admin(ADMIN)
    auth_state.login(ADMIN)

    assert _retire(test_client, "missing-tag").status_code == 404
