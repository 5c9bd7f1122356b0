"""
Identity resolution for incoming connections.

Runs once per connection, before the connection is registered. A missing
token yields an anonymous placeholder identity when anonymous access is
allowed; a token must be a valid HS256 JWT signed with the relay secret.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

import jwt

from shared.config.logging import get_logger
from shared.exceptions import AuthError
from chat_relay.components.core.models import Identity

logger = get_logger(__name__)

# Claims tried, in order, for the display name
DISPLAY_NAME_CLAIMS: tuple[str, ...] = ("name", "username", "preferred_username")


def sign_identity_token(
    user_id: str,
    name: str | None,
    secret: str,
    issuer: str,
    audience: str,
    ttl_seconds: int = 3600,
    algorithm: str = "HS256",
) -> str:
    """
    Sign an identity token for development and tests.

    Args:
        user_id: Subject claim.
        name: Display name, omitted from the token when None.
        ttl_seconds: Token lifetime in seconds.

    Returns:
        Signed JWT token string.
    """
    now = int(time.time())
    data: dict[str, Any] = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + ttl_seconds,
        "jti": str(uuid.uuid4()),
    }
    if name:
        data["name"] = name
    return jwt.encode(data, secret, algorithm=algorithm)


class IdentityResolver:
    """
    Resolves a credential token into an Identity.

    Usage:
        resolver = IdentityResolver(secret, issuer, audience)
        identity = resolver.resolve(token, connection_id)
    """

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        algorithm: str = "HS256",
        allow_anonymous: bool = True,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._algorithm = algorithm
        self._allow_anonymous = allow_anonymous

    @property
    def allow_anonymous(self) -> bool:
        return self._allow_anonymous

    def resolve(self, token: str | None, connection_id: str) -> Identity:
        """
        Resolve the identity for a new connection.

        Raises:
            AuthError: If no token is given and anonymous access is disabled,
                or if the token fails verification.
        """
        if not token:
            if not self._allow_anonymous:
                raise AuthError("Authentication required", connection_id=connection_id)
            return Identity.anonymous(connection_id)

        claims = self._verify(token)
        user_id = str(claims["sub"])
        display_name = next(
            (str(claims[c]).strip() for c in DISPLAY_NAME_CLAIMS if str(claims.get(c) or "").strip()),
            None,
        )
        if display_name is None:
            display_name = Identity.anonymous(connection_id).display_name

        return Identity(user_id=user_id, display_name=display_name)

    def _verify(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired") from None
        except jwt.InvalidTokenError as e:
            # The client only sees a generic message
            logger.warning("JWT validation failed", error=str(e))
            raise AuthError("Invalid token") from None

        if not str(claims.get("sub") or "").strip():
            raise AuthError("Invalid token: missing subject claim")
        return claims
