"""Tests for the iTop REST client."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from itop_notify.integrations.itop_client import (
    ItopAuthError,
    ItopClient,
    ItopNotConfiguredError,
    ItopResponseError,
    ItopUnavailableError,
)


@pytest.fixture
def configured(config, make_user):
    make_user("alice")
    config.set_admin_instance_url("https://itop.example.com/")
    config.set_application_token("app-secret")
    return config


def _client(config, handler):
    return ItopClient(config, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestRequest:
    def test_posts_json_data_form(self, configured):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["token"] = request.headers["Auth-Token"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"code": 0, "objects": None})

        result = _client(configured, handler).request("alice", {"operation": "core/get", "class": "Person"})

        assert result == {"code": 0, "objects": None}
        assert seen["url"] == "https://itop.example.com/webservices/rest.php?version=1.3"
        assert seen["token"] == "app-secret"
        assert json.loads(seen["form"]["json_data"][0]) == {"operation": "core/get", "class": "Person"}

    def test_personal_token_wins(self, configured):
        configured.set_personal_token("alice", "mine")
        tokens = []

        def handler(request):
            tokens.append(request.headers["Auth-Token"])
            return httpx.Response(200, json={"code": 0})

        _client(configured, handler).request("alice", {})
        assert tokens == ["mine"]

    def test_missing_url(self, config, make_user):
        make_user("alice")
        client = _client(config, lambda r: httpx.Response(200, json={}))
        assert client.request("alice", {}) == {"error": "iTop URL not configured"}

    def test_http_status_errors(self, configured):
        assert _client(configured, lambda r: httpx.Response(403)).request("alice", {}) == {"error": "Forbidden"}
        assert _client(configured, lambda r: httpx.Response(404)).request("alice", {}) == {"error": "Not found"}


class TestCoreGet:
    def test_maps_objects_to_fields(self, configured):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "code": 0,
                    "objects": {
                        "Person::5": {"code": 0, "class": "Person", "key": "5", "fields": {"friendlyname": "Alice"}},
                    },
                },
            )

        objects = _client(configured, handler).core_get("alice", "Person", 5, ("friendlyname",))
        assert objects == {"Person::5": {"friendlyname": "Alice"}}

    def test_http_401_names_the_credential(self, configured):
        with pytest.raises(ItopAuthError) as exc:
            _client(configured, lambda r: httpx.Response(401)).core_get("alice", "Person", 5, "id")
        assert exc.value.credential == "application"

    def test_itop_code_one_is_an_auth_error(self, configured):
        configured.set_personal_token("alice", "mine")

        def handler(request):
            return httpx.Response(200, json={"code": 1, "message": "Error: Invalid login"})

        with pytest.raises(ItopAuthError) as exc:
            _client(configured, handler).core_get("alice", "Person", 5, "id")
        assert exc.value.credential == "user"

    def test_unreachable(self, configured):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ItopUnavailableError):
            _client(configured, handler).core_get("alice", "Person", 5, "id")

    def test_invalid_body(self, configured):
        with pytest.raises(ItopUnavailableError):
            _client(configured, lambda r: httpx.Response(200, text="<html>")).core_get("alice", "Person", 5, "id")

    def test_other_itop_error_code(self, configured):
        def handler(request):
            return httpx.Response(200, json={"code": 100, "message": "Error: unknown class"})

        with pytest.raises(ItopResponseError) as exc:
            _client(configured, handler).core_get("alice", "Nope", 5, "id")
        assert exc.value.code == 100

    def test_no_token(self, config, make_user):
        make_user("alice")
        config.set_admin_instance_url("https://itop.example.com")
        with pytest.raises(ItopNotConfiguredError):
            _client(config, lambda r: httpx.Response(200, json={})).core_get("alice", "Person", 5, "id")
