from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .session import AuthSession

if TYPE_CHECKING:
    from ..identity import IdentityClient

logger = logging.getLogger(__name__)


def build_authorization_redirect(request_url: str, session: AuthSession, client: IdentityClient) -> str:
    """Start a sign-in: issue a fresh anti-replay token and build the provider URL.

    Inbound query parameters (utm tracking and the like) are forwarded to the
    provider verbatim, after ``access_type=offline`` and ``action=email``.
    """
    state = session.issue_state()
    session.utm_contents = {}

    parts = urlsplit(client.get_authorization_url(state))
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("access_type", "offline"))
    query.append(("action", "email"))
    forwarded = parse_qsl(urlsplit(request_url).query, keep_blank_values=True)
    query.extend(forwarded)

    logger.info("Issued authorization redirect", extra={"meta": {"forwarded_params": [k for k, _ in forwarded]}})
    return urlunsplit(parts._replace(query=urlencode(query)))
