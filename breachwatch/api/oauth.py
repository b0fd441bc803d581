from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from ..auth.confirm import CallbackRequest, ConfirmationFlow
from ..auth.init import build_authorization_redirect
from ..auth.session import AuthSession
from ..identity import IdentityClient
from .deps import get_confirmation_flow, get_identity_client

router = APIRouter(tags=["Auth"])


@router.get("/oauth/init")
async def oauth_init(request: Request, client: IdentityClient = Depends(get_identity_client)):
    """Send the browser to the identity provider with a fresh anti-replay token."""
    session = AuthSession.from_mapping(request.session)
    url = build_authorization_redirect(str(request.url), session, client)
    session.write_to(request.session)
    return RedirectResponse(url=url, status_code=302)


@router.get("/oauth/confirmed")
async def oauth_confirmed(request: Request, flow: ConfirmationFlow = Depends(get_confirmation_flow)):
    """Provider callback: confirm the sign-in and redirect to a local page.

    The session is written back even when the flow fails so the consumed
    anti-replay token stays cleared.
    """
    session = AuthSession.from_mapping(request.session)
    callback = CallbackRequest(
        url=str(request.url),
        state=request.query_params.get("state"),
        accept_language=request.headers.get("accept-language"),
        breach_catalog=getattr(request.app.state, "breaches", ()),
    )
    try:
        result = await flow.run(callback, session)
    finally:
        session.write_to(request.session)
    return RedirectResponse(url=result.decision.location, status_code=302)


__all__ = ["router"]
