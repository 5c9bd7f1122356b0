"""
Authentication components.

Resolves the identity of a connecting client.
"""

from chat_relay.components.auth.identity import IdentityResolver, sign_identity_token

__all__ = [
    "IdentityResolver",
    "sign_identity_token",
]
