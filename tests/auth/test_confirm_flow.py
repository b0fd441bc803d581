"""Confirmation flow: anti-replay, classification, provisioning and redirects."""

import json

import pytest

from breachwatch.auth.confirm import CallbackRequest, ConfirmStep
from breachwatch.auth.errors import (
    BreachLookupFailure,
    DuplicateSubscriber,
    InvalidSession,
    NotificationFailure,
    ProfileDataInvalid,
    StoreFailure,
    UpstreamAuthFailure,
)
from breachwatch.auth.session import AuthSession
from breachwatch.db.subscribers import PilotStatus, email_sha1
from tests.helpers.fakes import FakeIdentityClient, make_callback


@pytest.mark.asyncio
async def test_missing_session_state_fails_without_calling_provider(make_flow):
    identity = FakeIdentityClient()
    session = AuthSession(state=None)

    with pytest.raises(InvalidSession) as exc:
        await make_flow(identity).run(make_callback("whatever"), session)

    assert exc.value.reason == "missing_state"
    assert identity.calls == 0


@pytest.mark.asyncio
async def test_state_mismatch_fails_and_clears_token(make_flow):
    identity = FakeIdentityClient()
    session = AuthSession(state="expected-state")

    with pytest.raises(InvalidSession) as exc:
        await make_flow(identity).run(make_callback("forged-state"), session)

    assert exc.value.reason == "state_mismatch"
    assert identity.calls == 0
    assert session.state is None


@pytest.mark.asyncio
async def test_callback_without_state_param_is_invalid(make_flow):
    identity = FakeIdentityClient()
    session = AuthSession(state="expected-state")
    callback = CallbackRequest(url="https://monitor.example/oauth/confirmed?code=c0de", state=None)

    with pytest.raises(InvalidSession):
        await make_flow(identity).run(callback, session)
    assert identity.calls == 0


@pytest.mark.asyncio
async def test_replaying_a_successful_callback_is_rejected(make_flow):
    identity = FakeIdentityClient("new@example.com")
    flow = make_flow(identity)
    session = AuthSession(state="s1")

    await flow.run(make_callback("s1"), session)
    assert session.state is None

    with pytest.raises(InvalidSession):
        await flow.run(make_callback("s1"), session)
    assert len(identity.exchange_calls) == 1


@pytest.mark.asyncio
async def test_state_cleared_even_when_token_exchange_fails(make_flow, store):
    identity = FakeIdentityClient(fail_exchange=True)
    session = AuthSession(state="s1")

    with pytest.raises(UpstreamAuthFailure):
        await make_flow(identity).run(make_callback("s1"), session)

    assert session.state is None
    assert store.inserts == 0


@pytest.mark.asyncio
async def test_exchange_receives_callback_url_and_state(make_flow):
    identity = FakeIdentityClient()
    session = AuthSession(state="s1")
    callback = make_callback("s1", code="abc")

    await make_flow(identity).run(callback, session)

    assert identity.exchange_calls == [(callback.url, "s1")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "profile",
    ["not json at all", json.dumps({"uid": "no-email"}), json.dumps(["a", "b"]), json.dumps({"email": ""})],
)
async def test_unusable_profile_is_profile_data_invalid(make_flow, store, mailer, profile):
    identity = FakeIdentityClient(profile=profile)
    session = AuthSession(state="s1")

    with pytest.raises(ProfileDataInvalid):
        await make_flow(identity).run(make_callback("s1"), session)

    assert store.inserts == 0
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_new_email_is_provisioned_once_and_lands_on_dashboard(
    make_flow, store, pilot_checker, mailer
):
    pilot_checker.on_list = True
    identity = FakeIdentityClient("new@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    result = await make_flow(identity).run(make_callback("s1"), session)

    assert store.inserts == 1
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "new@example.com"
    assert store.flag_writes == [True]
    assert await store.get_pilot_flag(result.subscriber) is PilotStatus.MEMBER
    assert result.decision.location == "/user/dashboard"
    assert result.provisioned is True
    assert result.classification.existing_user is False
    assert session.new_user is True
    assert session.user["primary_email"] == "new@example.com"
    # new subscribers never redeem the hint
    assert session.post_auth_redirect == "/custom/path"


@pytest.mark.asyncio
async def test_new_subscriber_enrolled_even_when_not_on_hash_list(make_flow, store, pilot_checker):
    # Current behavior: both outcomes of the hash check store True.
    pilot_checker.on_list = False
    identity = FakeIdentityClient("outsider@example.com")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert pilot_checker.calls == ["outsider@example.com"]
    assert store.flag_writes == [True]
    assert await store.get_pilot_flag(result.subscriber) is PilotStatus.MEMBER


@pytest.mark.asyncio
async def test_new_user_email_carries_report_fields(make_flow, mailer):
    identity = FakeIdentityClient("new@example.com")

    await make_flow(identity).run(
        make_callback("s1", accept_language="de-DE,de;q=0.9,en;q=0.5"), AuthSession(state="s1")
    )

    message = mailer.sent[0]
    assert message["template"] == "default_email"
    assert message["subject"] == "Keine bekannten Datenlecks gefunden"
    ctx = message["context"]
    assert ctx["supported_locales"] == ["de", "en"]
    assert ctx["recipient_email"] == "new@example.com"
    assert ctx["breached_email"] == "new@example.com"
    assert ctx["which_partial"] == "email_partials/report"
    assert ctx["unsafe_breaches_for_email"] == []
    assert ctx["cta_href"].startswith("https://monitor.example/user/dashboard?")
    assert "utm_campaign=report" in ctx["cta_href"]
    assert "utm_source=breachwatch-emails" in ctx["cta_href"]
    assert "utm_source=breachwatch-emails" in ctx["unsubscribe_url"]
    assert ctx["unsubscribe_url"].startswith("https://monitor.example/user/unsubscribe?token=")


@pytest.mark.asyncio
async def test_returning_subscriber_only_refreshes_tokens(
    make_flow, store, mailer, existing_subscriber
):
    await existing_subscriber("returning@example.com", pilot=False)
    identity = FakeIdentityClient("returning@example.com", refresh_token="rt-new")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert store.inserts == 0
    assert mailer.sent == []
    assert store.token_updates == 1
    assert result.provisioned is False
    stored = await store.get_by_email("returning@example.com")
    assert stored.fxa_refresh_token == "rt-new"
    assert stored.fxa_access_token == "at-1"


@pytest.mark.asyncio
async def test_pilot_member_with_hint_is_sent_to_hint(
    make_flow, mailer, existing_subscriber
):
    await existing_subscriber("returning@example.com", pilot=True, optout=False)
    identity = FakeIdentityClient("returning@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    result = await make_flow(identity).run(make_callback("s1"), session)

    assert result.decision.location == "/custom/path"
    assert session.post_auth_redirect is None
    assert mailer.sent == []
    assert result.classification.pilot_eligible is True


@pytest.mark.asyncio
async def test_pilot_member_without_hint_gets_pilot_route(make_flow, existing_subscriber):
    await existing_subscriber("returning@example.com", pilot=True)
    identity = FakeIdentityClient("returning@example.com")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert result.decision.location == "/user/remove-data"


@pytest.mark.asyncio
async def test_opted_out_pilot_member_goes_to_dashboard(make_flow, existing_subscriber):
    await existing_subscriber("returning@example.com", pilot=True, optout=True)
    identity = FakeIdentityClient("returning@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    result = await make_flow(identity).run(make_callback("s1"), session)

    assert result.decision.location == "/user/dashboard"
    assert session.post_auth_redirect == "/custom/path"


@pytest.mark.asyncio
async def test_non_member_goes_to_dashboard_and_keeps_hint(
    make_flow, pilot_checker, existing_subscriber
):
    await existing_subscriber("returning@example.com", pilot=False)
    identity = FakeIdentityClient("returning@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    result = await make_flow(identity).run(make_callback("s1"), session)

    assert result.decision.location == "/user/dashboard"
    assert session.post_auth_redirect == "/custom/path"
    assert pilot_checker.calls == []


@pytest.mark.asyncio
async def test_unknown_flag_checked_once_and_persisted(
    make_flow, store, pilot_checker, existing_subscriber
):
    pilot_checker.on_list = True
    subscriber = await existing_subscriber("returning@example.com")
    assert await store.get_pilot_flag(subscriber) is PilotStatus.UNKNOWN
    identity = FakeIdentityClient("returning@example.com")
    flow = make_flow(identity)

    first = await flow.run(make_callback("s1"), AuthSession(state="s1"))
    second = await flow.run(make_callback("s2"), AuthSession(state="s2"))

    assert pilot_checker.calls == ["returning@example.com"]
    assert store.flag_writes == [True]
    assert await store.get_pilot_flag(subscriber) is PilotStatus.MEMBER
    assert first.decision.location == "/user/remove-data"
    assert second.decision.location == "/user/remove-data"


@pytest.mark.asyncio
async def test_unknown_flag_resolving_false_is_persisted(
    make_flow, store, pilot_checker, existing_subscriber
):
    subscriber = await existing_subscriber("returning@example.com")
    identity = FakeIdentityClient("returning@example.com")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert result.decision.location == "/user/dashboard"
    assert await store.get_pilot_flag(subscriber) is PilotStatus.NON_MEMBER


@pytest.mark.asyncio
async def test_unknown_flag_ignores_opt_out_when_on_list(
    make_flow, pilot_checker, existing_subscriber
):
    # opt-out is only consulted for already-resolved members
    pilot_checker.on_list = True
    await existing_subscriber("returning@example.com", optout=True)
    identity = FakeIdentityClient("returning@example.com")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert result.decision.location == "/user/remove-data"


@pytest.mark.asyncio
async def test_incomplete_signup_is_provisioned(
    make_flow, store, mailer, existing_subscriber
):
    await existing_subscriber("halfway@example.com", refresh_token=None, pilot=False)
    identity = FakeIdentityClient("halfway@example.com", refresh_token="rt-final")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert store.inserts == 1
    # completed by the post-send token write
    assert store.token_updates == 1
    assert len(mailer.sent) == 1
    assert result.classification.existing_user is True
    assert result.subscriber.fxa_refresh_token == "rt-final"


@pytest.mark.asyncio
async def test_steps_follow_the_returning_user_path(make_flow, existing_subscriber):
    await existing_subscriber("returning@example.com", pilot=False)
    identity = FakeIdentityClient("returning@example.com")

    result = await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert result.steps == [
        ConfirmStep.NO_SESSION_STATE,
        ConfirmStep.STATE_MISMATCH,
        ConfirmStep.TOKEN_EXCHANGE,
        ConfirmStep.PROFILE_FETCH,
        ConfirmStep.LOOKUP,
        ConfirmStep.PILOT_RESOLUTION,
        ConfirmStep.CREDENTIAL_REFRESH,
        ConfirmStep.REDIRECT,
    ]


@pytest.mark.asyncio
async def test_report_lists_breaches_found_for_new_email(make_flow, breach_client, mailer):
    from breachwatch.breaches import Breach

    breach_client.breaches = [Breach.model_validate({"Name": "Adobe", "Domain": "adobe.com", "IsVerified": True})]
    identity = FakeIdentityClient("victim@example.com")

    await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    message = mailer.sent[0]
    assert message["subject"] == "Here's your Breachwatch report"
    assert [b["name"] for b in message["context"]["unsafe_breaches_for_email"]] == ["Adobe"]
    assert breach_client.calls == [email_sha1("victim@example.com")]


@pytest.mark.asyncio
async def test_report_sent_on_retry_after_breach_lookup_failure(
    make_flow, store, breach_client, mailer
):
    breach_client.fail_next = BreachLookupFailure(reason="range_search_failed")
    identity = FakeIdentityClient("retry@example.com")
    flow = make_flow(identity)

    with pytest.raises(BreachLookupFailure):
        await flow.run(make_callback("s1"), AuthSession(state="s1"))
    assert store.inserts == 0
    assert mailer.sent == []

    result = await flow.run(make_callback("s2"), AuthSession(state="s2"))

    assert result.provisioned is True
    assert [m["to"] for m in mailer.sent] == ["retry@example.com"]


@pytest.mark.asyncio
async def test_report_sent_on_retry_after_send_failure(make_flow, store, mailer):
    mailer.fail_next = NotificationFailure(reason="send_rejected")
    identity = FakeIdentityClient("retry@example.com", refresh_token="rt-final")
    flow = make_flow(identity)

    with pytest.raises(NotificationFailure):
        await flow.run(make_callback("s1"), AuthSession(state="s1"))
    stored = await store.get_by_email("retry@example.com")
    assert stored.fxa_refresh_token is None

    result = await flow.run(make_callback("s2"), AuthSession(state="s2"))

    assert result.provisioned is True
    assert result.classification.existing_user is True
    assert mailer.attempts == 2
    assert len(mailer.sent) == 1
    assert (await store.get_by_email("retry@example.com")).fxa_refresh_token == "rt-final"


@pytest.mark.asyncio
async def test_store_failure_aborts_before_email_and_redirect(make_flow, store, mailer):
    store.errors["insert"] = StoreFailure(reason="insert_failed")
    identity = FakeIdentityClient("new@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    with pytest.raises(StoreFailure) as exc:
        await make_flow(identity).run(make_callback("s1"), session)

    assert exc.value.http_status == 500
    assert mailer.sent == []
    assert session.post_auth_redirect == "/custom/path"


@pytest.mark.asyncio
async def test_credential_refresh_failure_keeps_hint(make_flow, store, existing_subscriber):
    await existing_subscriber("returning@example.com", pilot=True)
    store.errors["update_tokens"] = StoreFailure(reason="update_tokens_failed")
    identity = FakeIdentityClient("returning@example.com")
    session = AuthSession(state="s1", post_auth_redirect="/custom/path")

    with pytest.raises(StoreFailure):
        await make_flow(identity).run(make_callback("s1"), session)

    assert session.post_auth_redirect == "/custom/path"


@pytest.mark.asyncio
async def test_losing_a_provisioning_race_sends_no_email(
    make_flow, store, mailer, existing_subscriber
):
    await existing_subscriber("racer@example.com", pilot=False)
    store.stale_lookup = True
    identity = FakeIdentityClient("racer@example.com")

    with pytest.raises(DuplicateSubscriber) as exc:
        await make_flow(identity).run(make_callback("s1"), AuthSession(state="s1"))

    assert exc.value.http_status == 409
    assert mailer.sent == []
    assert store.token_updates == 0
