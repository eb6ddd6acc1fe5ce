"""Tests for portal-only profile detection."""

import pytest
from conftest import NOW

from itop_notify.integrations.itop_client import ItopResponseError
from itop_notify.profiles.service import (
    PORTAL_PROFILE_NAME,
    ProfileNotConfiguredError,
    ProfileService,
    parse_profile_list,
)

DAY = 24 * 3600


@pytest.fixture
def service(config, fake_client, clock):
    return ProfileService(config, fake_client, clock=clock, ttl=DAY)


def _user_with_profiles(fake_client, remote_id, profiles):
    fake_client.on("User", remote_id, objects={f"User::{remote_id}": {"id": remote_id, "profile_list": profiles}})


class TestParseProfileList:
    def test_list_of_link_objects(self):
        raw = [{"profileid": "2", "profile": "Portal user"}, {"profileid": "3", "profile": "Support Agent"}]
        assert parse_profile_list(raw) == ["Portal user", "Support Agent"]

    def test_json_string(self):
        assert parse_profile_list('["Portal user"]') == ["Portal user"]

    def test_comma_separated_string(self):
        assert parse_profile_list("Portal user, Support Agent") == ["Portal user", "Support Agent"]

    def test_empty_values(self):
        assert parse_profile_list(None) == []
        assert parse_profile_list("") == []
        assert parse_profile_list([{"profile": ""}]) == []


class TestIsPortalOnly:
    def test_single_portal_profile(self, service, make_user, fake_client, config):
        make_user("carol", person_id="6", remote_user_id="11", portal_only=None)
        _user_with_profiles(fake_client, "11", [{"profile": PORTAL_PROFILE_NAME}])

        assert service.is_portal_only("carol") is True
        assert config.get_portal_only("carol") is True
        assert config.get_profiles_checked_at("carol") == NOW

    def test_agent_profiles(self, service, make_user, fake_client):
        make_user("alice", portal_only=None)
        _user_with_profiles(fake_client, "9", [{"profile": PORTAL_PROFILE_NAME}, {"profile": "Support Agent"}])
        assert service.is_portal_only("alice") is False

    def test_stored_answer_is_trusted_within_ttl(self, service, make_user, fake_client, clock):
        make_user("alice", portal_only=False)
        clock.advance(DAY - 1)
        assert service.is_portal_only("alice") is False
        assert fake_client.calls == []

    def test_stored_answer_expires(self, service, make_user, fake_client, clock):
        make_user("alice", portal_only=False)
        _user_with_profiles(fake_client, "9", [{"profile": PORTAL_PROFILE_NAME}])
        clock.advance(DAY + 1)
        assert service.is_portal_only("alice") is True

    def test_account_without_profiles_is_portal_only(self, service, make_user, fake_client):
        make_user("alice", portal_only=None)
        _user_with_profiles(fake_client, "9", [])
        assert service.is_portal_only("alice") is True


class TestGetUserProfiles:
    def test_resolves_account_from_person(self, service, make_user, fake_client, config):
        make_user("dave", person_id="13", remote_user_id=None, portal_only=None)
        fake_client.on("User", "contactid = 13", objects={"User::21": {"id": "21", "login": "dave"}})
        _user_with_profiles(fake_client, "21", [{"profile": "Support Agent"}])

        assert service.get_user_profiles("dave") == ["Support Agent"]
        assert config.get_remote_user_id("dave") == "21"

    def test_person_without_account(self, service, make_user):
        make_user("dave", person_id="13", remote_user_id=None, portal_only=None)
        assert service.get_user_profiles("dave") == [PORTAL_PROFILE_NAME]

    def test_unlinked_user(self, service, make_user):
        make_user("eve", person_id=None, remote_user_id=None, portal_only=None)
        with pytest.raises(ProfileNotConfiguredError):
            service.get_user_profiles("eve")

    def test_missing_account(self, service, make_user):
        make_user("alice", portal_only=None)
        with pytest.raises(ItopResponseError):
            service.get_user_profiles("alice")


def test_refresh_ignores_stored_answer(service, make_user, fake_client, config):
    make_user("alice", portal_only=True)
    _user_with_profiles(fake_client, "9", [{"profile": "Support Agent"}])

    assert service.refresh("alice") is False
    assert config.get_portal_only("alice") is False
