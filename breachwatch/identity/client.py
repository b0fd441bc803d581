from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ..auth.errors import UpstreamAuthFailure
from ..logging_config import redact
from ..settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str | None
    scope: str | None = None
    expires_at: int | None = None


class _TokenResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str | None = None
    scope: str | None = None
    expires_in: int | None = None


class ProfilePayload(BaseModel):
    """The part of the provider profile the sign-in flow relies on."""

    model_config = ConfigDict(extra="allow")

    email: str


class IdentityClient:
    """Two-call OAuth client: code exchange and profile fetch.

    ``transport`` lets tests route requests to an ``httpx.MockTransport``.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.client_id = settings.OAUTH_CLIENT_ID.strip()
        self.client_secret = settings.OAUTH_CLIENT_SECRET.strip()
        self.authorization_url = settings.OAUTH_AUTHORIZATION_URL
        self.token_url = settings.OAUTH_TOKEN_URL
        self.profile_url = settings.OAUTH_PROFILE_URL
        self.redirect_uri = settings.oauth_redirect_uri
        self.scopes = settings.OAUTH_SCOPES.strip()
        self.timeout = settings.HTTP_CLIENT_TIMEOUT
        self._transport = transport

        if not self.client_id or not self.client_secret:
            logger.debug("OAuth client credentials not configured")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def get_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "response_type": "code",
            "state": state,
        }
        return f"{self.authorization_url}?{urlencode(params)}"

    async def exchange_code(self, request_url: str, *, state: str) -> TokenSet:
        """Exchange the authorization code carried by the callback URL.

        Raises UpstreamAuthFailure on every failure; nothing is retried.
        """
        query = parse_qs(urlsplit(request_url).query)
        if "error" in query:
            raise UpstreamAuthFailure(reason=query["error"][0])
        if query.get("state", [None])[0] != state:
            raise UpstreamAuthFailure(reason="state_mismatch")
        code = query.get("code", [None])[0]
        if not code:
            raise UpstreamAuthFailure(reason="missing_code")

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
        }
        async with self._client() as client:
            try:
                r = await client.post(self.token_url, data=data, headers={"Accept": "application/json"})
            except httpx.HTTPError as exc:
                logger.warning("oauth_token_exchange_failed: network", extra={"meta": {"error": str(exc)}})
                raise UpstreamAuthFailure(reason="token_exchange_network") from exc

        if r.status_code != 200:
            try:
                err = r.json()
            except ValueError:
                err = {}
            logger.warning(
                "OAuth token exchange failed",
                extra={
                    "meta": {
                        "status_code": r.status_code,
                        "provider_error": err.get("error") if isinstance(err, dict) else None,
                    }
                },
            )
            raise UpstreamAuthFailure(reason="token_exchange_failed", extra={"status_code": r.status_code})

        try:
            td = _TokenResponse.model_validate_json(r.content)
        except ValidationError as exc:
            logger.warning("OAuth token response unusable", extra={"meta": {"errors": exc.error_count()}})
            raise UpstreamAuthFailure(reason="token_response_invalid") from exc

        logger.info(
            "OAuth token exchange successful",
            extra={"meta": redact(td.model_dump())},
        )
        expires_at = int(time.time()) + td.expires_in if td.expires_in else None
        return TokenSet(
            access_token=td.access_token,
            refresh_token=td.refresh_token,
            scope=td.scope,
            expires_at=expires_at,
        )

    async def get_profile(self, access_token: str) -> str:
        """Return the raw profile JSON document for ``access_token``."""
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        async with self._client() as client:
            try:
                r = await client.get(self.profile_url, headers=headers)
            except httpx.HTTPError as exc:
                logger.warning("oauth_profile_fetch_failed: network", extra={"meta": {"error": str(exc)}})
                raise UpstreamAuthFailure(reason="profile_fetch_network") from exc
        if r.status_code != 200:
            logger.warning("OAuth profile fetch failed", extra={"meta": {"status_code": r.status_code}})
            raise UpstreamAuthFailure(reason="profile_fetch_failed", extra={"status_code": r.status_code})
        return r.text
