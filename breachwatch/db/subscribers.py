"""Durable subscriber records keyed by primary email.

Every method runs in its own transaction; a write is committed before the
method returns, so the confirmation flow never redirects ahead of persistence.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import secrets
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth.errors import DuplicateSubscriber, StoreFailure
from .models import Subscriber
from .core import session_scope

logger = logging.getLogger(__name__)


class PilotStatus(enum.Enum):
    """Pilot-list membership: confirmed member, confirmed non-member, or not yet checked."""

    MEMBER = "member"
    NON_MEMBER = "non_member"
    UNKNOWN = "unknown"

    @classmethod
    def from_column(cls, value: bool | None) -> PilotStatus:
        if value is None:
            return cls.UNKNOWN
        return cls.MEMBER if value else cls.NON_MEMBER


def email_sha1(email: str) -> str:
    return hashlib.sha1(email.encode("utf-8")).hexdigest()


class SubscriberStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _translate_errors(self, op: str, subscriber_ref: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            logger.warning(
                "Subscriber write rejected by uniqueness constraint",
                extra={"meta": {"op": op, "subscriber": subscriber_ref, "error": str(exc.orig)}},
            )
            raise DuplicateSubscriber(extra={"op": op}) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "Subscriber store failure",
                extra={"meta": {"op": op, "subscriber": subscriber_ref, "error": str(exc)}},
            )
            raise StoreFailure(reason=f"{op}_failed", extra={"op": op}) from exc

    async def get_by_email(self, email: str) -> Subscriber | None:
        with self._translate_errors("get_by_email", email_sha1(email)):
            async with session_scope(self._session_factory) as session:
                return await session.scalar(
                    select(Subscriber).where(Subscriber.primary_email == email)
                )

    async def insert(
        self,
        email: str,
        locale: str | None,
        access_token: str,
        refresh_token: str | None,
        profile: str,
    ) -> Subscriber:
        """Create the subscriber, or complete a signup that never stored a refresh token.

        Raises ``DuplicateSubscriber`` when the email already belongs to a
        fully provisioned subscriber, including the case where a concurrent
        confirmation won the race for the same email.
        """
        sha1 = email_sha1(email)
        with self._translate_errors("insert", sha1):
            async with session_scope(self._session_factory) as session:
                existing = await session.scalar(
                    select(Subscriber).where(Subscriber.primary_email == email)
                )
                if existing is not None:
                    if existing.fxa_refresh_token is not None:
                        raise DuplicateSubscriber(extra={"op": "insert"})
                    result = await session.execute(
                        update(Subscriber)
                        .where(
                            Subscriber.id == existing.id,
                            Subscriber.fxa_refresh_token.is_(None),
                        )
                        .values(
                            signup_language=locale,
                            fxa_access_token=access_token,
                            fxa_refresh_token=refresh_token,
                            fxa_profile_json=profile,
                        )
                    )
                    if result.rowcount != 1:
                        raise DuplicateSubscriber(extra={"op": "insert"})
                    await session.refresh(existing)
                    logger.info("Completed incomplete signup", extra={"meta": {"subscriber_id": existing.id}})
                    return existing

                subscriber = Subscriber(
                    primary_email=email,
                    primary_sha1=sha1,
                    primary_verification_token=secrets.token_hex(16),
                    primary_verified=True,
                    signup_language=locale,
                    fxa_access_token=access_token,
                    fxa_refresh_token=refresh_token,
                    fxa_profile_json=profile,
                )
                session.add(subscriber)
                await session.flush()
                logger.info("Inserted subscriber", extra={"meta": {"subscriber_id": subscriber.id}})
                return subscriber

    async def update_tokens(
        self,
        subscriber: Subscriber,
        access_token: str,
        refresh_token: str | None,
        profile: str,
    ) -> None:
        with self._translate_errors("update_tokens", subscriber.primary_sha1):
            async with session_scope(self._session_factory) as session:
                await session.execute(
                    update(Subscriber)
                    .where(Subscriber.id == subscriber.id)
                    .values(
                        fxa_access_token=access_token,
                        fxa_refresh_token=refresh_token,
                        fxa_profile_json=profile,
                    )
                )
        subscriber.fxa_access_token = access_token
        subscriber.fxa_refresh_token = refresh_token
        subscriber.fxa_profile_json = profile

    async def get_pilot_flag(self, subscriber: Subscriber) -> PilotStatus:
        with self._translate_errors("get_pilot_flag", subscriber.primary_sha1):
            async with session_scope(self._session_factory) as session:
                value = await session.scalar(
                    select(Subscriber.onremovallist).where(Subscriber.id == subscriber.id)
                )
        return PilotStatus.from_column(value)

    async def set_pilot_flag(self, subscriber: Subscriber, value: bool) -> None:
        with self._translate_errors("set_pilot_flag", subscriber.primary_sha1):
            async with session_scope(self._session_factory) as session:
                await session.execute(
                    update(Subscriber)
                    .where(Subscriber.id == subscriber.id)
                    .values(onremovallist=bool(value))
                )
        subscriber.onremovallist = bool(value)

    async def get_pilot_optout(self, subscriber: Subscriber) -> bool:
        with self._translate_errors("get_pilot_optout", subscriber.primary_sha1):
            async with session_scope(self._session_factory) as session:
                value = await session.scalar(
                    select(Subscriber.removal_optout).where(Subscriber.id == subscriber.id)
                )
        return bool(value)
