"""Test-specific fixtures."""

import json
import logging
import sys

import pytest
import pytest_asyncio
from sqlalchemy import update

from breachwatch.auth.confirm import ConfirmationFlow
from breachwatch.auth.pilot import PilotResolver
from breachwatch.auth.provisioning import Provisioner
from breachwatch.db import Subscriber, create_engine_from_url, create_session_factory, init_models, session_scope
from breachwatch.settings import Settings
from tests.helpers.fakes import (
    FakeBreachClient,
    FakeEmailSender,
    FakeIdentityClient,
    FakePilotChecker,
    SpySubscriberStore,
)


@pytest.fixture(scope="session", autouse=True)
def sane_logging():
    """Force a simple stdout handler for the whole test session."""
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    h = logging.StreamHandler(sys.stdout)
    h.setLevel(logging.INFO)
    root.addHandler(h)
    root.setLevel(logging.INFO)
    yield


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SERVER_URL="https://monitor.example",
        SESSION_SECRET="test-session-secret-at-least-32-characters",
        OAUTH_CLIENT_ID="cid",
        OAUTH_CLIENT_SECRET="csec",
        OAUTH_AUTHORIZATION_URL="https://idp.example/authorization",
        OAUTH_TOKEN_URL="https://idp.example/v1/token",
        OAUTH_PROFILE_URL="https://profile.idp.example/v1/profile",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'breachwatch.db'}",
        DASHBOARD_PATH="/user/dashboard",
        REMOVE_LOGGED_IN_DEFAULT_ROUTE="/user/remove-data",
        LOAD_BREACHES_ON_STARTUP=False,
        EMAIL_API_URL="",
        PILOT_HASH_FILE="",
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_engine_from_url(settings.DATABASE_URL)
    await init_models(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SpySubscriberStore(session_factory)


@pytest.fixture
def identity():
    return FakeIdentityClient()


@pytest.fixture
def pilot_checker():
    return FakePilotChecker(on_list=False)


@pytest.fixture
def breach_client():
    return FakeBreachClient()


@pytest.fixture
def mailer():
    return FakeEmailSender()


@pytest.fixture
def make_flow(settings, store, pilot_checker, breach_client, mailer):
    """Build a ConfirmationFlow around the real store and fake externals."""

    def _make(identity):
        pilot = PilotResolver(store, pilot_checker)
        provisioner = Provisioner(store, breach_client, mailer, pilot, settings)
        return ConfirmationFlow(identity, store, pilot, provisioner, settings)

    return _make


@pytest.fixture
def existing_subscriber(store, session_factory):
    """Create a subscriber as if an earlier sign-in had completed."""

    async def _create(email, *, pilot=None, optout=False, refresh_token="rt-0"):
        subscriber = await store.insert(
            email, "en-US", "at-0", refresh_token, json.dumps({"email": email})
        )
        if pilot is not None:
            await store.set_pilot_flag(subscriber, pilot)
        if optout:
            async with session_scope(session_factory) as s:
                await s.execute(
                    update(Subscriber)
                    .where(Subscriber.id == subscriber.id)
                    .values(removal_optout=True)
                )
        store.reset_counts()
        return subscriber

    return _create
