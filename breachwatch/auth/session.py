"""Explicit session context for the sign-in flow.

``AuthSession`` is read from the signed session cookie at the start of a
request, handed to each step by reference, and written back before the
response leaves. Mutation contract:

- Init: sets ``state``, resets ``utm_contents``.
- Confirmation: clears ``state`` once it has been compared, sets ``user``
  after lookup and again after provisioning, sets ``new_user`` when
  provisioning.
- Redirect resolution: clears ``post_auth_redirect`` when it is redeemed.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from .redirects import sanitize_next_path

STATE_BYTES = 40

_KEYS = ("state", "user", "new_user", "post_auth_redirect", "utm_contents")


@dataclass
class AuthSession:
    state: str | None = None
    user: dict[str, Any] | None = None
    new_user: bool = False
    post_auth_redirect: str | None = None
    utm_contents: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AuthSession:
        return cls(
            state=data.get("state") or None,
            user=data.get("user"),
            new_user=bool(data.get("new_user", False)),
            post_auth_redirect=data.get("post_auth_redirect") or None,
            utm_contents=dict(data.get("utm_contents") or {}),
        )

    def write_to(self, data: MutableMapping[str, Any]) -> None:
        values = {
            "state": self.state,
            "user": self.user,
            "new_user": self.new_user,
            "post_auth_redirect": self.post_auth_redirect,
            "utm_contents": self.utm_contents,
        }
        for key in _KEYS:
            value = values[key]
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value

    def issue_state(self) -> str:
        self.state = secrets.token_hex(STATE_BYTES)
        return self.state

    def consume_state(self) -> str | None:
        state, self.state = self.state, None
        return state

    def remember_post_auth_redirect(self, path: str | None) -> None:
        """Stash a local path to land on after the next successful sign-in."""
        self.post_auth_redirect = sanitize_next_path(path) if path else None

    def pop_post_auth_redirect(self) -> str | None:
        hint, self.post_auth_redirect = self.post_auth_redirect, None
        return hint
