"""
auth — bearer-token verification for connector routes.

Provides:
  • Signed token creation & verification (HMAC-SHA256)
  • ``get_current_user_id`` FastAPI dependency

Users are registered and logged in elsewhere; this service only checks
the token they present.
"""
