"""Breach catalog and k-anonymity exposure lookup.

Only the first six hex characters of an email's SHA-1 leave the process; the
range endpoint answers with every known suffix for that prefix and the match
happens locally.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..auth.errors import BreachLookupFailure
from ..settings import Settings

logger = logging.getLogger(__name__)

_PREFIX_LEN = 6


class Breach(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str = Field(alias="Name")
    title: str = Field(default="", alias="Title")
    domain: str = Field(default="", alias="Domain")
    breach_date: str | None = Field(default=None, alias="BreachDate")
    added_date: str | None = Field(default=None, alias="AddedDate")
    pwn_count: int = Field(default=0, alias="PwnCount")
    data_classes: list[str] = Field(default_factory=list, alias="DataClasses")
    is_verified: bool = Field(default=False, alias="IsVerified")
    is_fabricated: bool = Field(default=False, alias="IsFabricated")
    is_sensitive: bool = Field(default=False, alias="IsSensitive")
    is_retired: bool = Field(default=False, alias="IsRetired")
    is_spam_list: bool = Field(default=False, alias="IsSpamList")


class _RangeMatch(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hashSuffix: str
    websites: list[str] = Field(default_factory=list)


def filter_breaches(breaches: Sequence[Breach]) -> list[Breach]:
    """Drop breaches that should never be reported to a subscriber."""
    return [
        b
        for b in breaches
        if not b.is_retired
        and not b.is_spam_list
        and not b.is_fabricated
        and b.is_verified
        and b.domain != ""
    ]


class BreachClient:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.api_root = settings.HIBP_API_ROOT.rstrip("/")
        self.kanon_root = settings.HIBP_KANON_API_ROOT.rstrip("/")
        self.kanon_token = settings.HIBP_KANON_API_TOKEN
        self.timeout = settings.HTTP_CLIENT_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def load_breaches(self) -> list[Breach]:
        """Fetch the full breach catalog."""
        async with self._client() as client:
            try:
                r = await client.get(f"{self.api_root}/breaches")
                r.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning("Breach catalog fetch failed", extra={"meta": {"error": str(exc)}})
                raise BreachLookupFailure(reason="catalog_unavailable") from exc
        try:
            breaches = [Breach.model_validate(item) for item in r.json()]
        except (ValueError, ValidationError) as exc:
            raise BreachLookupFailure(reason="catalog_invalid") from exc
        logger.info("Loaded breach catalog", extra={"meta": {"breaches": len(breaches)}})
        return breaches

    async def _range_search(self, prefix: str) -> list[_RangeMatch]:
        headers = {"Accept": "application/json"}
        if self.kanon_token:
            headers["Authorization"] = f"Bearer {self.kanon_token}"
        async with self._client() as client:
            try:
                r = await client.post(
                    f"{self.kanon_root}/search", json={"hashPrefix": prefix}, headers=headers
                )
            except httpx.HTTPError as exc:
                logger.warning("Breach range search failed: network", extra={"meta": {"error": str(exc)}})
                raise BreachLookupFailure(reason="range_search_network") from exc
        if r.status_code == 404:
            return []
        if r.status_code != 200:
            logger.warning("Breach range search failed", extra={"meta": {"status_code": r.status_code}})
            raise BreachLookupFailure(reason="range_search_failed", extra={"status_code": r.status_code})
        try:
            return [_RangeMatch.model_validate(item) for item in r.json()]
        except (ValueError, ValidationError) as exc:
            raise BreachLookupFailure(reason="range_search_invalid") from exc

    async def get_breaches_for_email(
        self,
        sha1: str,
        all_breaches: Sequence[Breach],
        *,
        include_sensitive: bool = False,
    ) -> list[Breach]:
        """Return catalog breaches that exposed the account with SHA-1 ``sha1``."""
        sha1 = sha1.upper()
        prefix = sha1[:_PREFIX_LEN]
        found: list[Breach] = []
        for match in await self._range_search(prefix):
            if sha1 == prefix + match.hashSuffix.upper():
                sites = set(match.websites)
                found = filter_breaches([b for b in all_breaches if b.name in sites])
                break
        if not include_sensitive:
            found = [b for b in found if not b.is_sensitive]
        return found
