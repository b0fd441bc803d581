"""Sign-in flow: authorization redirect, callback confirmation and redirects."""

from .errors import (
    AuthFlowError,
    BreachLookupFailure,
    DuplicateSubscriber,
    InvalidSession,
    NotificationFailure,
    ProfileDataInvalid,
    StoreFailure,
    UpstreamAuthFailure,
)

__all__ = [
    "AuthFlowError",
    "BreachLookupFailure",
    "DuplicateSubscriber",
    "InvalidSession",
    "NotificationFailure",
    "ProfileDataInvalid",
    "StoreFailure",
    "UpstreamAuthFailure",
]
