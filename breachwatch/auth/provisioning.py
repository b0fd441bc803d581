from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from ..db.subscribers import email_sha1
from ..notifications import (
    email_cta_href,
    format_date,
    report_subject,
    unsubscribe_url,
)

if TYPE_CHECKING:
    from ..breaches import Breach, BreachClient
    from ..db.models import Subscriber
    from ..db.subscribers import SubscriberStore
    from ..identity import TokenSet
    from ..notifications import EmailSender
    from ..settings import Settings
    from .pilot import PilotResolver

logger = logging.getLogger(__name__)

REPORT_TEMPLATE = "default_email"
REPORT_PARTIAL = "email_partials/report"
REPORT_UTM_ID = "report"


class Provisioner:
    """First sign-in: create the subscriber and send the one report email.

    Returning subscribers only get their stored credentials refreshed.
    """

    def __init__(
        self,
        store: SubscriberStore,
        breaches: BreachClient,
        mailer: EmailSender,
        pilot: PilotResolver,
        settings: Settings,
    ) -> None:
        self._store = store
        self._breaches = breaches
        self._mailer = mailer
        self._pilot = pilot
        self._settings = settings

    async def provision(
        self,
        *,
        email: str,
        tokens: TokenSet,
        profile_json: str,
        signup_language: str | None,
        locales: list[str],
        breach_catalog: Sequence[Breach],
        today: dt.date | None = None,
    ) -> Subscriber:
        unsafe = await self._breaches.get_breaches_for_email(
            email_sha1(email), breach_catalog, include_sensitive=True
        )

        # Stored without a refresh token until the report is out, so a failed
        # send is retried as an incomplete signup on the next sign-in.
        subscriber = await self._store.insert(
            email,
            signup_language,
            tokens.access_token,
            None,
            profile_json,
        )

        subject = report_subject(unsafe, locales)
        server_url = self._settings.SERVER_URL
        await self._mailer.send(
            email,
            subject,
            REPORT_TEMPLATE,
            {
                "supported_locales": locales,
                "breached_email": email,
                "recipient_email": email,
                "date": format_date(today or dt.date.today(), locales),
                "unsafe_breaches_for_email": [b.model_dump() for b in unsafe],
                "cta_href": email_cta_href(
                    server_url, self._settings.DASHBOARD_PATH, REPORT_UTM_ID, "go-to-dashboard-link"
                ),
                "unsubscribe_url": unsubscribe_url(server_url, subscriber, REPORT_UTM_ID),
                "which_partial": REPORT_PARTIAL,
            },
        )
        await self._store.update_tokens(subscriber, tokens.access_token, tokens.refresh_token, profile_json)
        logger.info(
            "Provisioned subscriber",
            extra={"meta": {"subscriber_id": subscriber.id, "breaches": len(unsafe)}},
        )

        await self._pilot.mark_new_subscriber(subscriber)
        return subscriber

    async def refresh_credentials(self, subscriber: Subscriber, tokens: TokenSet, profile_json: str) -> None:
        await self._store.update_tokens(subscriber, tokens.access_token, tokens.refresh_token, profile_json)
        logger.info("Refreshed stored credentials", extra={"meta": {"subscriber_id": subscriber.id}})
