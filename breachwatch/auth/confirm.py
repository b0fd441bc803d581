"""Callback confirmation: the post-redirect half of the sign-in.

The flow is an explicit state machine. Each step is a coroutine that performs
one check or one external round-trip and returns the next step; a failure
raises one of the ``AuthFlowError`` subclasses and aborts the run before any
redirect is produced. Steps run strictly in order because each one needs the
previous result.

    NO_SESSION_STATE -> STATE_MISMATCH -> TOKEN_EXCHANGE -> PROFILE_FETCH -> LOOKUP
    LOOKUP -> PILOT_RESOLUTION (existing subscriber) | PROVISIONING (absent)
    PILOT_RESOLUTION -> CREDENTIAL_REFRESH (complete) | PROVISIONING (no refresh token)
    PROVISIONING | CREDENTIAL_REFRESH -> REDIRECT -> DONE

The redirect is resolved only after persistence succeeded, so a failed run
leaves the stashed post-auth hint in place.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import ValidationError

from ..identity import ProfilePayload
from ..notifications import negotiate_locales
from .errors import InvalidSession, ProfileDataInvalid
from .redirects import RedirectDecision, resolve_redirect

if TYPE_CHECKING:
    from ..breaches import Breach
    from ..db.models import Subscriber
    from ..db.subscribers import SubscriberStore
    from ..identity import IdentityClient, TokenSet
    from ..settings import Settings
    from .pilot import PilotResolver
    from .provisioning import Provisioner
    from .session import AuthSession

logger = logging.getLogger(__name__)


class ConfirmStep(enum.Enum):
    NO_SESSION_STATE = "no_session_state"
    STATE_MISMATCH = "state_mismatch"
    TOKEN_EXCHANGE = "token_exchange"
    PROFILE_FETCH = "profile_fetch"
    LOOKUP = "lookup"
    PILOT_RESOLUTION = "pilot_resolution"
    PROVISIONING = "provisioning"
    CREDENTIAL_REFRESH = "credential_refresh"
    REDIRECT = "redirect"
    DONE = "done"


@dataclass(frozen=True)
class CallbackRequest:
    url: str
    state: str | None
    accept_language: str | None = None
    breach_catalog: Sequence[Breach] = ()


@dataclass
class Classification:
    email: str
    existing_user: bool
    pilot_eligible: bool = False
    subscriber: Subscriber | None = None


@dataclass
class ConfirmResult:
    classification: Classification
    subscriber: Subscriber
    decision: RedirectDecision
    provisioned: bool
    steps: list[ConfirmStep]


@dataclass
class _Run:
    request: CallbackRequest
    session: AuthSession
    expected_state: str | None = None
    tokens: TokenSet | None = None
    profile_json: str | None = None
    email: str | None = None
    subscriber: Subscriber | None = None
    existing_user: bool = False
    pilot_eligible: bool = False
    provisioned: bool = False
    decision: RedirectDecision | None = None
    steps: list[ConfirmStep] = field(default_factory=list)


class ConfirmationFlow:
    def __init__(
        self,
        client: IdentityClient,
        store: SubscriberStore,
        pilot: PilotResolver,
        provisioner: Provisioner,
        settings: Settings,
    ) -> None:
        self._client = client
        self._store = store
        self._pilot = pilot
        self._provisioner = provisioner
        self._settings = settings
        self._steps: dict[ConfirmStep, Callable[[_Run], Awaitable[ConfirmStep]]] = {
            ConfirmStep.NO_SESSION_STATE: self._require_session_state,
            ConfirmStep.STATE_MISMATCH: self._compare_state,
            ConfirmStep.TOKEN_EXCHANGE: self._exchange_code,
            ConfirmStep.PROFILE_FETCH: self._fetch_profile,
            ConfirmStep.LOOKUP: self._lookup,
            ConfirmStep.PILOT_RESOLUTION: self._resolve_pilot,
            ConfirmStep.PROVISIONING: self._provision,
            ConfirmStep.CREDENTIAL_REFRESH: self._refresh_credentials,
            ConfirmStep.REDIRECT: self._resolve_redirect,
        }

    async def run(self, request: CallbackRequest, session: AuthSession) -> ConfirmResult:
        run = _Run(request=request, session=session)
        step = ConfirmStep.NO_SESSION_STATE
        while step is not ConfirmStep.DONE:
            run.steps.append(step)
            try:
                step = await self._steps[step](run)
            except Exception:
                logger.warning("Confirmation aborted", extra={"meta": {"step": step.value}})
                raise

        assert run.subscriber is not None and run.decision is not None and run.email is not None
        logger.info(
            "Confirmation complete",
            extra={
                "meta": {
                    "subscriber_id": run.subscriber.id,
                    "existing_user": run.existing_user,
                    "pilot_eligible": run.pilot_eligible,
                    "provisioned": run.provisioned,
                    "location": run.decision.location,
                }
            },
        )
        return ConfirmResult(
            classification=Classification(
                email=run.email,
                existing_user=run.existing_user,
                pilot_eligible=run.pilot_eligible,
                subscriber=run.subscriber,
            ),
            subscriber=run.subscriber,
            decision=run.decision,
            provisioned=run.provisioned,
            steps=run.steps,
        )

    async def _require_session_state(self, run: _Run) -> ConfirmStep:
        if not run.session.state:
            raise InvalidSession(reason="missing_state")
        return ConfirmStep.STATE_MISMATCH

    async def _compare_state(self, run: _Run) -> ConfirmStep:
        # Single use: cleared whether or not it matches
        expected = run.session.consume_state()
        if run.request.state != expected:
            raise InvalidSession(reason="state_mismatch")
        run.expected_state = expected
        return ConfirmStep.TOKEN_EXCHANGE

    async def _exchange_code(self, run: _Run) -> ConfirmStep:
        run.tokens = await self._client.exchange_code(run.request.url, state=run.expected_state)
        return ConfirmStep.PROFILE_FETCH

    async def _fetch_profile(self, run: _Run) -> ConfirmStep:
        raw = await self._client.get_profile(run.tokens.access_token)
        try:
            profile = ProfilePayload.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("Unusable profile payload", extra={"meta": {"payload": raw, "errors": exc.errors()}})
            raise ProfileDataInvalid(reason="payload_invalid") from exc
        if not profile.email.strip():
            logger.error("Profile payload without email", extra={"meta": {"payload": raw}})
            raise ProfileDataInvalid(reason="email_missing")
        run.profile_json = raw
        run.email = profile.email
        return ConfirmStep.LOOKUP

    async def _lookup(self, run: _Run) -> ConfirmStep:
        run.subscriber = await self._store.get_by_email(run.email)
        run.existing_user = run.subscriber is not None
        run.session.user = run.subscriber.to_session() if run.subscriber else None
        if run.subscriber is None:
            return ConfirmStep.PROVISIONING
        return ConfirmStep.PILOT_RESOLUTION

    async def _resolve_pilot(self, run: _Run) -> ConfirmStep:
        run.pilot_eligible = await self._pilot.resolve_existing(run.subscriber)
        if run.subscriber.fxa_refresh_token is None:
            # signup never completed
            return ConfirmStep.PROVISIONING
        return ConfirmStep.CREDENTIAL_REFRESH

    async def _provision(self, run: _Run) -> ConfirmStep:
        run.session.new_user = True
        run.subscriber = await self._provisioner.provision(
            email=run.email,
            tokens=run.tokens,
            profile_json=run.profile_json,
            signup_language=run.request.accept_language,
            locales=negotiate_locales(run.request.accept_language),
            breach_catalog=run.request.breach_catalog,
        )
        run.provisioned = True
        run.session.user = run.subscriber.to_session()
        return ConfirmStep.REDIRECT

    async def _refresh_credentials(self, run: _Run) -> ConfirmStep:
        await self._provisioner.refresh_credentials(run.subscriber, run.tokens, run.profile_json)
        return ConfirmStep.REDIRECT

    async def _resolve_redirect(self, run: _Run) -> ConfirmStep:
        run.decision = resolve_redirect(
            run.pilot_eligible,
            run.session,
            server_url=self._settings.SERVER_URL,
            dashboard_path=self._settings.DASHBOARD_PATH,
            pilot_default_route=self._settings.REMOVE_LOGGED_IN_DEFAULT_ROUTE,
        )
        return ConfirmStep.DONE
