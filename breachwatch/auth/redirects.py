"""
Post-auth redirect resolution.

Every target is re-anchored against the server's own origin and only its
path and query end up in the ``Location`` header, so a stashed hint can never
send the browser to another host.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import unquote, urljoin, urlsplit

if TYPE_CHECKING:
    from .session import AuthSession

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT = "/user/dashboard"

# Never land back inside the sign-in flow
BLOCKLIST_PATHS = {"/oauth"}


@dataclass(frozen=True)
class RedirectDecision:
    url: str

    @property
    def location(self) -> str:
        parts = urlsplit(self.url)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path


def resolve_redirect(
    pilot_eligible: bool,
    session: AuthSession,
    *,
    server_url: str,
    dashboard_path: str = DEFAULT_REDIRECT,
    pilot_default_route: str,
) -> RedirectDecision:
    """Pick the single post-confirmation target.

    Only a pilot-eligible user redeems (and clears) the stashed hint; for
    everyone else the hint is left in the session untouched.
    """
    if not pilot_eligible:
        return RedirectDecision(urljoin(server_url, dashboard_path))
    hint = session.pop_post_auth_redirect()
    if hint:
        return RedirectDecision(urljoin(server_url, hint))
    return RedirectDecision(urljoin(server_url, pilot_default_route))


def _decode(url: str, max_decodes: int = 2) -> str:
    decoded = url
    for _ in range(max_decodes):
        previous = decoded
        decoded = unquote(decoded)
        if decoded == previous:
            break
    return decoded


def _is_blocklisted(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in BLOCKLIST_PATHS)


def sanitize_next_path(raw: str | None, default: str = DEFAULT_REDIRECT) -> str:
    """
    Normalize a caller-supplied path before it is stashed in the session.

    Relative paths only: absolute and protocol-relative URLs, traversal and
    sign-in routes fall back to ``default``. Fragments are dropped and
    repeated slashes collapsed.
    """
    if not raw or not isinstance(raw, str):
        return default
    path = _decode(raw.strip())
    if not path:
        return default
    if path.startswith(("http://", "https://")) or path.startswith(("//", "\\\\", "/\\")):
        logger.warning("Rejected non-local redirect: %s", path)
        return default
    if not path.startswith("/"):
        logger.warning("Rejected non-relative redirect: %s", path)
        return default
    path = path.split("#", 1)[0]
    path = re.sub(r"/{2,}", "/", path)
    if ".." in path:
        logger.warning("Rejected path traversal redirect: %s", path)
        return default
    if _is_blocklisted(urlsplit(path).path):
        logger.warning("Rejected sign-in flow redirect: %s", path)
        return default
    return path
