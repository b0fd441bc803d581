import json
from urllib.parse import parse_qs

import httpx
import pytest

from breachwatch.auth.errors import UpstreamAuthFailure
from breachwatch.identity import IdentityClient

CALLBACK = "https://monitor.example/oauth/confirmed?code=the-code&state=s1"


def _client(settings, handler):
    return IdentityClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_exchange_code_posts_form_and_returns_tokens(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(
            200, json={"access_token": "at", "refresh_token": "rt", "scope": "profile", "expires_in": 3600}
        )

    tokens = await _client(settings, handler).exchange_code(CALLBACK, state="s1")

    assert tokens.access_token == "at"
    assert tokens.refresh_token == "rt"
    assert tokens.expires_at is not None
    assert seen["url"] == "https://idp.example/v1/token"
    assert seen["form"]["code"] == ["the-code"]
    assert seen["form"]["grant_type"] == ["authorization_code"]
    assert seen["form"]["client_secret"] == ["csec"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url,reason",
    [
        ("https://monitor.example/oauth/confirmed?error=access_denied&state=s1", "access_denied"),
        ("https://monitor.example/oauth/confirmed?code=c&state=other", "state_mismatch"),
        ("https://monitor.example/oauth/confirmed?state=s1", "missing_code"),
    ],
)
async def test_exchange_rejects_bad_callback_without_network(settings, url, reason):
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(UpstreamAuthFailure) as exc:
        await _client(settings, handler).exchange_code(url, state="s1")
    assert exc.value.reason == reason


@pytest.mark.asyncio
async def test_exchange_provider_error_status(settings):
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(UpstreamAuthFailure) as exc:
        await _client(settings, handler).exchange_code(CALLBACK, state="s1")
    assert exc.value.reason == "token_exchange_failed"
    assert exc.value.http_status == 502


@pytest.mark.asyncio
async def test_exchange_network_error(settings):
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(UpstreamAuthFailure) as exc:
        await _client(settings, handler).exchange_code(CALLBACK, state="s1")
    assert exc.value.reason == "token_exchange_network"


@pytest.mark.asyncio
async def test_exchange_response_without_access_token(settings):
    def handler(request):
        return httpx.Response(200, json={"token_type": "bearer"})

    with pytest.raises(UpstreamAuthFailure) as exc:
        await _client(settings, handler).exchange_code(CALLBACK, state="s1")
    assert exc.value.reason == "token_response_invalid"


@pytest.mark.asyncio
async def test_token_values_not_logged(settings, caplog):
    def handler(request):
        return httpx.Response(200, json={"access_token": "secret-at-value", "refresh_token": "secret-rt-value"})

    caplog.set_level("INFO")
    await _client(settings, handler).exchange_code(CALLBACK, state="s1")
    logged = " ".join(json.dumps(getattr(r, "meta", {})) + r.getMessage() for r in caplog.records)
    assert "secret-at-value" not in logged
    assert "secret-rt-value" not in logged


@pytest.mark.asyncio
async def test_get_profile_returns_raw_body(settings):
    def handler(request):
        assert request.headers["Authorization"] == "Bearer at"
        return httpx.Response(200, text='{"email": "a@example.com", "uid": "1"}')

    raw = await _client(settings, handler).get_profile("at")
    assert json.loads(raw)["email"] == "a@example.com"


@pytest.mark.asyncio
async def test_get_profile_failure(settings):
    def handler(request):
        return httpx.Response(401, json={"error": "unauthorized"})

    with pytest.raises(UpstreamAuthFailure) as exc:
        await _client(settings, handler).get_profile("at")
    assert exc.value.reason == "profile_fetch_failed"


def test_authorization_url(settings):
    url = IdentityClient(settings).get_authorization_url("abc")
    assert url.startswith("https://idp.example/authorization?")
    assert "state=abc" in url
    assert "scope=profile" in url
