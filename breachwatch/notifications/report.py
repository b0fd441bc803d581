from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import urlencode, urljoin

from ..breaches import Breach
from ..db.models import Subscriber
from .locales import translate

UTM_SOURCE = "breachwatch-emails"
UTM_MEDIUM = "email"


def _utm(campaign: str, content: str | None = None) -> dict[str, str]:
    params = {"utm_source": UTM_SOURCE, "utm_medium": UTM_MEDIUM, "utm_campaign": campaign}
    if content:
        params["utm_content"] = content
    return params


def report_subject(breaches: Sequence[Breach], locales: list[str]) -> str:
    if not breaches:
        return translate(locales, "email-subject-no-breaches")
    return translate(locales, "email-subject-found-breaches")


def email_cta_href(server_url: str, dashboard_path: str, campaign: str, content: str) -> str:
    return f"{urljoin(server_url, dashboard_path)}?{urlencode(_utm(campaign, content))}"


def unsubscribe_url(server_url: str, subscriber: Subscriber, campaign: str) -> str:
    params = {
        "token": subscriber.primary_verification_token,
        "hash": subscriber.primary_sha1,
        **_utm(campaign),
    }
    return f"{urljoin(server_url, '/user/unsubscribe')}?{urlencode(params)}"
