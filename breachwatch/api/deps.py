"""FastAPI dependencies wiring the sign-in flow to the app's shared resources.

Tests swap any of these through ``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from ..auth.confirm import ConfirmationFlow
from ..auth.pilot import PilotResolver
from ..auth.provisioning import Provisioner
from ..breaches import BreachClient
from ..db.subscribers import SubscriberStore
from ..identity import IdentityClient
from ..notifications import EmailSender
from ..pilot_list import PilotListChecker
from ..settings import Settings


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_identity_client(settings: Settings = Depends(get_app_settings)) -> IdentityClient:
    return IdentityClient(settings)


def get_subscriber_store(request: Request) -> SubscriberStore:
    return SubscriberStore(request.app.state.session_factory)


def get_pilot_checker(request: Request) -> PilotListChecker:
    # Shared so the hash file is read once per process
    return request.app.state.pilot_checker


def get_breach_client(settings: Settings = Depends(get_app_settings)) -> BreachClient:
    return BreachClient(settings)


def get_email_sender(settings: Settings = Depends(get_app_settings)) -> EmailSender:
    return EmailSender(settings)


def get_confirmation_flow(
    settings: Settings = Depends(get_app_settings),
    client: IdentityClient = Depends(get_identity_client),
    store: SubscriberStore = Depends(get_subscriber_store),
    checker: PilotListChecker = Depends(get_pilot_checker),
    breaches: BreachClient = Depends(get_breach_client),
    mailer: EmailSender = Depends(get_email_sender),
) -> ConfirmationFlow:
    pilot = PilotResolver(store, checker)
    provisioner = Provisioner(store, breaches, mailer, pilot, settings)
    return ConfirmationFlow(client, store, pilot, provisioner, settings)
