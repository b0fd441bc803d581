from .client import IdentityClient, ProfilePayload, TokenSet

__all__ = ["IdentityClient", "ProfilePayload", "TokenSet"]
