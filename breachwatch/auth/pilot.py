from __future__ import annotations

import logging
from typing import TYPE_CHECKING, assert_never

from ..db.subscribers import PilotStatus

if TYPE_CHECKING:
    from ..db.models import Subscriber
    from ..db.subscribers import SubscriberStore
    from ..pilot_list import PilotListChecker

logger = logging.getLogger(__name__)


class PilotResolver:
    """Resolves pilot-list membership, consulting the hash list at most once per subscriber.

    Only ``UNKNOWN`` triggers the hash check; its answer is persisted so the
    next sign-in takes one of the resolved branches.
    """

    def __init__(self, store: SubscriberStore, checker: PilotListChecker) -> None:
        self._store = store
        self._checker = checker

    async def resolve_existing(self, subscriber: Subscriber) -> bool:
        """Return whether a returning subscriber should get the pilot redirect."""
        status = await self._store.get_pilot_flag(subscriber)
        if status is PilotStatus.MEMBER:
            opted_out = await self._store.get_pilot_optout(subscriber)
            logger.debug("Pilot member", extra={"meta": {"subscriber_id": subscriber.id, "opted_out": opted_out}})
            return not opted_out
        elif status is PilotStatus.NON_MEMBER:
            return False
        elif status is PilotStatus.UNKNOWN:
            # opt-out is not consulted on this branch
            on_list = await self._checker.is_email_on_pilot_list(subscriber.primary_email)
            await self._store.set_pilot_flag(subscriber, on_list)
            logger.info(
                "Resolved pilot membership",
                extra={"meta": {"subscriber_id": subscriber.id, "on_list": on_list}},
            )
            return on_list
        else:
            assert_never(status)

    async def mark_new_subscriber(self, subscriber: Subscriber) -> None:
        # Both outcomes of the check enrol the new subscriber.
        # TODO: confirm with product whether non-matches should be stored as False.
        if await self._checker.is_email_on_pilot_list(subscriber.primary_email):
            await self._store.set_pilot_flag(subscriber, True)
        else:
            await self._store.set_pilot_flag(subscriber, True)
