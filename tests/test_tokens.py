from datetime import timedelta
from urllib.parse import parse_qs

import pytest
import requests
import responses
from freezegun import freeze_time

from ledgersync.errors import AuthError
from ledgersync.tokens import TokenCache

TENANT = "11111111-1111-1111-1111-111111111111"
CLIENT = "22222222-2222-2222-2222-222222222222"
TOKEN_URL = f"https://login.microsoftonline.com/{TENANT}/oauth2/v2.0/token"


def add_token(access_token="token-1", expires_in=3600, status=200):
    responses.add(
        responses.POST,
        TOKEN_URL,
        json={"token_type": "Bearer", "access_token": access_token, "expires_in": expires_in},
        status=status,
    )


class TestTokenCache:
    @responses.activate
    def test_fetches_then_reuses(self):
        add_token()
        cache = TokenCache("client-secret")

        assert cache.get_token(TENANT, CLIENT) == "token-1"
        assert cache.get_token(TENANT, CLIENT) == "token-1"
        assert len(responses.calls) == 1
        assert len(cache) == 1

    @responses.activate
    def test_client_credentials_grant(self):
        add_token()
        cache = TokenCache("client-secret", scope="https://api.example.com/.default")

        cache.get_token(TENANT, CLIENT)

        body = parse_qs(responses.calls[0].request.body)
        assert body["grant_type"] == ["client_credentials"]
        assert body["client_id"] == [CLIENT]
        assert body["client_secret"] == ["client-secret"]
        assert body["scope"] == ["https://api.example.com/.default"]

    @responses.activate
    def test_token_expiring_within_margin_is_refreshed(self):
        # Stored expiry is now + 90s - 60s = 30s away, inside the 60s margin
        add_token("short-lived", expires_in=90)
        add_token("fresh", expires_in=3600)
        cache = TokenCache("client-secret")

        assert cache.get_token(TENANT, CLIENT) == "short-lived"
        assert cache.get_token(TENANT, CLIENT) == "fresh"
        assert len(responses.calls) == 2

    @responses.activate
    def test_refresh_after_time_passes(self):
        add_token("first", expires_in=3600)
        add_token("second", expires_in=3600)
        cache = TokenCache("client-secret")

        with freeze_time("2025-01-15 10:00:00") as frozen:
            assert cache.get_token(TENANT, CLIENT) == "first"

            frozen.tick(timedelta(seconds=3479))
            assert cache.get_token(TENANT, CLIENT) == "first"

            frozen.tick(timedelta(seconds=2))
            assert cache.get_token(TENANT, CLIENT) == "second"

        assert len(responses.calls) == 2

    @responses.activate
    def test_cache_is_keyed_by_client(self):
        add_token("token-a")
        add_token("token-b")
        cache = TokenCache("client-secret")

        assert cache.get_token(TENANT, "client-a") == "token-a"
        assert cache.get_token(TENANT, "client-b") == "token-b"
        assert cache.get_token(TENANT, "client-a") == "token-a"
        assert len(responses.calls) == 2

    @responses.activate
    def test_invalidate(self):
        add_token("token-1")
        add_token("token-2")
        cache = TokenCache("client-secret")

        cache.get_token(TENANT, CLIENT)
        cache.invalidate(CLIENT)
        assert cache.get_token(TENANT, CLIENT) == "token-2"

        cache.invalidate()
        assert len(cache) == 0

    @responses.activate
    def test_custom_auth_host(self):
        responses.add(
            responses.POST,
            f"https://login.example.com/{TENANT}/oauth2/v2.0/token",
            json={"access_token": "t", "expires_in": 3600},
        )
        cache = TokenCache("client-secret", auth_host="login.example.com")
        assert cache.get_token(TENANT, CLIENT) == "t"


class TestTokenErrors:
    @responses.activate
    def test_non_success_status(self):
        responses.add(responses.POST, TOKEN_URL, json={"error": "invalid_client"}, status=401)

        with pytest.raises(AuthError, match="401"):
            TokenCache("wrong").get_token(TENANT, CLIENT)

    @responses.activate
    def test_non_json_body(self):
        responses.add(responses.POST, TOKEN_URL, body="<html>oops</html>", status=200)

        with pytest.raises(AuthError, match="not JSON"):
            TokenCache("client-secret").get_token(TENANT, CLIENT)

    @responses.activate
    @pytest.mark.parametrize("payload", [{"expires_in": 3600}, {"access_token": "t"}, {}])
    def test_missing_fields(self, payload):
        responses.add(responses.POST, TOKEN_URL, json=payload, status=200)

        with pytest.raises(AuthError, match="missing"):
            TokenCache("client-secret").get_token(TENANT, CLIENT)

    @responses.activate
    def test_transport_error(self):
        responses.add(responses.POST, TOKEN_URL, body=requests.ConnectionError("connection refused"))

        with pytest.raises(AuthError, match="connection refused"):
            TokenCache("client-secret").get_token(TENANT, CLIENT)

    @responses.activate
    def test_failed_fetch_caches_nothing(self):
        responses.add(responses.POST, TOKEN_URL, status=503)
        cache = TokenCache("client-secret")

        with pytest.raises(AuthError):
            cache.get_token(TENANT, CLIENT)
        assert len(cache) == 0
