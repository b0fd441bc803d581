"""Failure taxonomy of the sign-in confirmation flow.

Every error aborts the flow before a redirect is issued; none is retried here.
"""

from dataclasses import dataclass

ERR_INVALID_SESSION = "oauth_invalid_session"
ERR_UPSTREAM_AUTH = "oauth_upstream_failed"
ERR_PROFILE_INVALID = "oauth_profile_invalid"
ERR_STORE_FAILURE = "store_failure"
ERR_DUPLICATE_SUBSCRIBER = "store_duplicate_subscriber"
ERR_BREACH_LOOKUP = "breach_lookup_failed"
ERR_NOTIFICATION = "notification_failed"


@dataclass(eq=False)
class AuthFlowError(Exception):
    code: str
    http_status: int
    reason: str
    message: str = "Sign-in failed"
    hint: str | None = None
    extra: dict | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.reason}"


class InvalidSession(AuthFlowError):
    """Anti-replay token missing from the session or not matching the callback."""

    def __init__(self, reason: str = "invalid_session", extra: dict | None = None):
        super().__init__(
            code=ERR_INVALID_SESSION,
            http_status=401,
            reason=reason,
            message="Your sign-in session is invalid or has expired",
            hint="start the sign-in again",
            extra=extra,
        )


class UpstreamAuthFailure(AuthFlowError):
    """Token exchange or profile fetch against the identity provider failed."""

    def __init__(self, reason: str = "upstream_failed", extra: dict | None = None):
        super().__init__(
            code=ERR_UPSTREAM_AUTH,
            http_status=502,
            reason=reason,
            message="The identity provider could not complete sign-in",
            hint="try again shortly",
            extra=extra,
        )


class ProfileDataInvalid(AuthFlowError):
    def __init__(self, reason: str = "profile_invalid", extra: dict | None = None):
        super().__init__(
            code=ERR_PROFILE_INVALID,
            http_status=502,
            reason=reason,
            message="The identity provider returned an unusable profile",
            extra=extra,
        )


class StoreFailure(AuthFlowError):
    def __init__(
        self,
        reason: str = "store_failure",
        extra: dict | None = None,
        *,
        code: str = ERR_STORE_FAILURE,
        http_status: int = 500,
    ):
        super().__init__(
            code=code,
            http_status=http_status,
            reason=reason,
            message="Your account could not be saved",
            hint="try again shortly",
            extra=extra,
        )


class DuplicateSubscriber(StoreFailure):
    """A concurrent confirmation already provisioned this email."""

    def __init__(self, reason: str = "duplicate_subscriber", extra: dict | None = None):
        super().__init__(reason, extra, code=ERR_DUPLICATE_SUBSCRIBER, http_status=409)


class BreachLookupFailure(AuthFlowError):
    def __init__(self, reason: str = "breach_lookup_failed", extra: dict | None = None):
        super().__init__(
            code=ERR_BREACH_LOOKUP,
            http_status=502,
            reason=reason,
            message="Breach data is temporarily unavailable",
            hint="try again shortly",
            extra=extra,
        )


class NotificationFailure(AuthFlowError):
    def __init__(self, reason: str = "notification_failed", extra: dict | None = None):
        super().__init__(
            code=ERR_NOTIFICATION,
            http_status=502,
            reason=reason,
            message="The welcome email could not be sent",
            extra=extra,
        )
