"""Tests for public scan redirects (/l/{token} and legacy /r?id=)."""

import pytest
from sqlalchemy import create_engine

from linket_api.db.engine import build_sessionmaker
from linket_api.db.models import (
    EVENT_SCAN,
    TAG_CLAIMABLE,
    TAG_CLAIMED,
    TAG_RETIRED,
    TARGET_URL,
    ProfileLink,
    TagAssignment,
)
from linket_api.db.repo_tags import TagEventRepository
from linket_api.db.session import get_optional_session_factory
from linket_api.main import app
from linket_api.tags.redirects import RedirectResolver

SITE_ORIGIN = "https://linket.test"

OWNER = "owner-1"


def _scan(test_client, path: str, **kwargs):
    return test_client.get(path, follow_redirects=False, **kwargs)


def _scan_events(db_session, tag_id: str):
    db_session.expire_all()
    return [
        event
        for event in TagEventRepository(db_session).list_for_tag(tag_id)
        if event.event_type == EVENT_SCAN
    ]


def _claimed_tag(factory, token: str, status: str = TAG_CLAIMED):
    return factory.tag(status=status, public_token=token)


class TestPublicToken:
    def test_unclaimed_tag_goes_to_claim_flow(self, test_client, factory, db_session) -> None:
        tag = factory.tag(public_token="freshtag0001")

        response = _scan(test_client, "/l/freshtag0001")

        assert response.status_code == 302
        assert response.headers["location"] == f"{SITE_ORIGIN}/dashboard/linkets?claim=freshtag0001"
        assert len(_scan_events(db_session, tag.id)) == 1

    def test_claimable_status_also_goes_to_claim_flow(self, test_client, factory) -> None:
        factory.tag(status=TAG_CLAIMABLE, public_token="claimable001")

        response = _scan(test_client, "/l/claimable001")

        assert response.headers["location"].endswith("/dashboard/linkets?claim=claimable001")

    def test_unknown_token_goes_home_without_event(self, test_client, side_effects) -> None:
        response = _scan(test_client, "/l/doesnotexist")

        assert response.status_code == 302
        assert response.headers["location"] == f"{SITE_ORIGIN}/"
        assert side_effects == []

    def test_bare_prefix_goes_home(self, test_client) -> None:
        response = _scan(test_client, "/l")

        assert response.status_code == 302
        assert response.headers["location"] == f"{SITE_ORIGIN}/"

    def test_url_target_redirects_exactly(self, test_client, factory, db_session) -> None:
        tag = _claimed_tag(factory, "urltarget001")
        target = "https://example.com/menu?table=4#drinks"
        assignment = factory.assignment(tag, OWNER, target_type=TARGET_URL, target_url=target)

        response = _scan(test_client, "/l/urltarget001")

        assert response.status_code == 302
        assert response.headers["location"] == target

        events = _scan_events(db_session, tag.id)
        assert len(events) == 1
        assert events[0].event_meta["owner_user_id"] == OWNER
        db_session.expire_all()
        assert db_session.get(TagAssignment, assignment.id).last_redirected_at is not None

    def test_active_profile_handle(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "handletag001")
        factory.profile(OWNER, handle="maya")
        factory.assignment(tag, OWNER)

        response = _scan(test_client, "/l/handletag001")

        assert response.headers["location"] == f"{SITE_ORIGIN}/maya"

    def test_assignment_profile_wins_over_active_profile(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "pinnedprof01")
        factory.profile(OWNER, handle="active-one")
        pinned = factory.profile(OWNER, handle="pinned-one", is_active=False)
        factory.assignment(tag, OWNER, profile_id=pinned.id)

        response = _scan(test_client, "/l/pinnedprof01")

        assert response.headers["location"] == f"{SITE_ORIGIN}/pinned-one"

    def test_override_link_wins_and_counts_click(
        self, test_client, factory, db_session, side_effects
    ) -> None:
        tag = _claimed_tag(factory, "override0001")
        profile = factory.profile(OWNER, handle="maya")
        factory.link(profile, "https://example.com/regular", order_index=0)
        override = factory.link(profile, "https://example.com/promo", order_index=1, is_override=True)
        factory.assignment(tag, OWNER, profile_id=profile.id)

        response = _scan(test_client, "/l/override0001")

        assert response.headers["location"] == "https://example.com/promo"
        assert ("profile_link.click", "ok") in side_effects
        db_session.expire_all()
        assert db_session.get(ProfileLink, override.id).click_count == 1

    def test_first_override_by_order_index_wins(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "override0002")
        profile = factory.profile(OWNER)
        factory.link(profile, "https://example.com/second", order_index=5, is_override=True)
        factory.link(profile, "https://example.com/first", order_index=2, is_override=True)
        factory.link(profile, "https://example.com/inactive", order_index=0, is_override=True, is_active=False)
        factory.assignment(tag, OWNER, profile_id=profile.id)

        response = _scan(test_client, "/l/override0002")

        assert response.headers["location"] == "https://example.com/first"

    def test_url_target_beats_override(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "urlvsover001")
        profile = factory.profile(OWNER)
        factory.link(profile, "https://example.com/promo", is_override=True)
        factory.assignment(
            tag, OWNER, profile_id=None, target_type=TARGET_URL, target_url="https://example.org/x"
        )

        response = _scan(test_client, "/l/urlvsover001")

        assert response.headers["location"] == "https://example.org/x"

    def test_invalid_stored_url_falls_through_to_profile(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "badstored001")
        factory.profile(OWNER, handle="fallback")
        factory.assignment(tag, OWNER, target_type=TARGET_URL, target_url="javascript:alert(1)")

        response = _scan(test_client, "/l/badstored001")

        assert response.headers["location"] == f"{SITE_ORIGIN}/fallback"

    def test_retired_tag_resolves_like_claimed(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "retired00001", status=TAG_RETIRED)
        factory.profile(OWNER, handle="retiree")
        factory.assignment(tag, OWNER)

        response = _scan(test_client, "/l/retired00001")

        assert response.headers["location"] == f"{SITE_ORIGIN}/retiree"

    def test_claimed_without_profile_goes_to_dashboard(self, test_client, factory) -> None:
        tag = _claimed_tag(factory, "noprofile001")
        factory.assignment(tag, OWNER)

        response = _scan(test_client, "/l/noprofile001")

        assert response.headers["location"] == f"{SITE_ORIGIN}/dashboard/linkets"

    def test_claimed_without_assignment_goes_to_dashboard(self, test_client, factory) -> None:
        _claimed_tag(factory, "orphan000001")

        response = _scan(test_client, "/l/orphan000001")

        assert response.headers["location"] == f"{SITE_ORIGIN}/dashboard/linkets"

    def test_scan_metadata_is_privacy_preserving(self, test_client, factory, db_session) -> None:
        tag = _claimed_tag(factory, "metadata0001")
        profile = factory.profile(OWNER, handle="meta")
        factory.assignment(tag, OWNER, profile_id=profile.id)

        _scan(
            test_client,
            "/l/metadata0001",
            headers={
                "user-agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)",
                "referer": "https://www.instagram.com/some/post?id=1",
                "x-forwarded-for": "203.0.113.9",
                "cf-ipcountry": "US",
            },
        )

        (event,) = _scan_events(db_session, tag.id)
        meta = event.event_meta
        assert meta["device"] == "mobile"
        assert meta["referrer"] == "www.instagram.com"
        assert meta["country"] == "US"
        assert meta["owner_user_id"] == meta["user_id"] == OWNER
        assert meta["owner_profile_id"] == meta["profile_id"] == profile.id
        assert "203.0.113.9" not in str(meta)
        assert len(meta["ip_hash"]) == 64

    def test_every_scan_records_one_event(self, test_client, factory, db_session) -> None:
        tag = _claimed_tag(factory, "repeated0001")
        factory.profile(OWNER)
        factory.assignment(tag, OWNER)

        for _ in range(3):
            _scan(test_client, "/l/repeated0001")

        assert len(_scan_events(db_session, tag.id)) == 3


class TestStoreFailures:
    def test_unconfigured_store_goes_home(self, test_client, side_effects) -> None:
        app.dependency_overrides[get_optional_session_factory] = lambda: None

        response = _scan(test_client, "/l/anything0001")

        assert response.status_code == 302
        assert response.headers["location"] == f"{SITE_ORIGIN}/"
        assert side_effects == []

    def test_store_without_tables_goes_home(self, test_client, tmp_path) -> None:
        broken = build_sessionmaker(create_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
        app.dependency_overrides[get_optional_session_factory] = lambda: broken

        response = _scan(test_client, "/l/anything0001")

        assert response.status_code == 302
        assert response.headers["location"] == f"{SITE_ORIGIN}/"

    def test_resolver_without_store(self) -> None:
        resolution = RedirectResolver(None).resolve_public_token("abc")

        assert resolution.location == "/"
        assert resolution.tag is None


class TestLegacyChipUid:
    def test_missing_id(self, test_client) -> None:
        response = _scan(test_client, "/r")

        assert response.status_code == 307
        assert response.headers["location"] == f"{SITE_ORIGIN}/missing-tag"

    def test_unknown_chip(self, test_client) -> None:
        response = _scan(test_client, "/r", params={"id": "04:AA"})

        assert response.headers["location"] == f"{SITE_ORIGIN}/unrecognized?tag=04%3AAA"

    def test_unassigned_chip_goes_to_claim(self, test_client, factory) -> None:
        factory.tag(chip_uid="CHIP0001")

        response = _scan(test_client, "/r", params={"id": "CHIP0001"})

        assert response.headers["location"] == f"{SITE_ORIGIN}/claim?tag=CHIP0001"

    def test_assigned_chip_goes_to_profile(self, test_client, factory, db_session) -> None:
        tag = factory.tag(status=TAG_CLAIMED, chip_uid="CHIP0002")
        factory.profile(OWNER, handle="maya")
        factory.assignment(tag, OWNER)

        response = _scan(test_client, "/r", params={"id": "CHIP0002"})

        assert response.status_code == 307
        assert response.headers["location"] == f"{SITE_ORIGIN}/u/maya"
        assert len(_scan_events(db_session, tag.id)) == 1

    def test_unconfigured_store_goes_to_error(self, test_client) -> None:
        app.dependency_overrides[get_optional_session_factory] = lambda: None

        response = _scan(test_client, "/r", params={"id": "CHIP0003"})

        assert response.headers["location"] == f"{SITE_ORIGIN}/error"


@pytest.mark.parametrize("token", ["", "   "])
def test_blank_token_resolves_home(session_factory, token) -> None:
    assert RedirectResolver(session_factory).resolve_public_token(token).reason == "blank_token"
