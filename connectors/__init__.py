"""
connectors — Gmail OAuth2 credential lifecycle.

Provides:
  • OAuth2 auth-URL generation with single-use CSRF state nonces
  • Callback handling (code → token exchange)
  • AES-256-GCM encryption of tokens at rest
  • Per-user credential storage & auto-refresh
  • Best-effort revocation / disconnect
"""
