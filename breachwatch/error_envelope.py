from __future__ import annotations

import os
import secrets
import time
from datetime import UTC, datetime
from typing import Any, TypedDict

from .logging_config import req_id_var


class ErrorEnvelope(TypedDict, total=False):
    code: str
    message: str
    detail: str
    hint: str | None
    meta: dict[str, Any]


_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _ulid() -> str:
    """Generate a ULID-like identifier (time + randomness, Crockford base32)."""
    ts_ms = int(time.time() * 1000)
    num = int.from_bytes(ts_ms.to_bytes(6, "big") + secrets.token_bytes(10), "big")
    out = []
    for _ in range(26):
        out.append(_ENCODING[num & 31])
        num >>= 5
    return "".join(reversed(out))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_error(
    *,
    code: str,
    message: str,
    hint: str | None = None,
    meta: dict[str, Any] | None = None,
) -> ErrorEnvelope:
    """Body of every failed sign-in response.

    ``code`` is the stable machine value, also sent as ``X-Error-Code``.
    ``meta`` carries the correlation ids a support request needs.
    """
    body: ErrorEnvelope = {"code": code, "message": message, "detail": message}
    if hint is not None:
        body["hint"] = hint
    d = dict(meta or {})
    d.setdefault("req_id", req_id_var.get())
    d.setdefault("timestamp", _now_iso())
    d.setdefault("error_id", _ulid())
    env = os.getenv("ENV")
    if env:
        d.setdefault("env", env)
    body["meta"] = d
    return body
