"""
Error taxonomy for the OAuth credential lifecycle.

Messages are safe to show to users: they never carry authorization codes,
tokens or state nonces.
"""


class OAuthError(Exception):
    """Base class for every lifecycle failure."""


class StateNotFound(OAuthError):
    """The state nonce is unknown or was already consumed."""


class StateExpired(OAuthError):
    """The state nonce exists but is past its TTL."""


class AuthorizationFailed(OAuthError):
    """User denied consent or the CSRF state did not validate."""


class CodeExchangeFailed(OAuthError):
    """The provider rejected the authorization code exchange."""


class IncompleteGrant(OAuthError):
    """The provider answered without both an access and a refresh token."""


class NotConnected(OAuthError):
    """The user has no linked credential."""


class RefreshFailed(OAuthError):
    """The refresh grant failed (e.g. consent revoked externally)."""


class DecryptionError(OAuthError):
    """Ciphertext is malformed, tampered with, or was sealed with another key."""


class ProviderError(OAuthError):
    """A call to the OAuth provider failed."""


class RevocationFailed(ProviderError):
    """Token revocation at the provider failed. Never fatal for disconnect."""
