"""
Authentication for the SpendFlow REST API.

SpendFlow only consumes bearer tokens; identities are issued by the auth
provider. Tokens are HS256 JWTs (PyJWT) with ``sub`` = user id and
``email`` claims, scoped by issuer and audience.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt as pyjwt

from spendflow.lib.exceptions import ConfigurationError
from spendflow.lib.security import hash_uid

logger = logging.getLogger(__name__)

TOKEN_ISSUER = "spendflow"
TOKEN_AUDIENCE = "spendflow-api"


@dataclass
class AuthToken:
    """Decoded bearer token."""

    user_id: str
    issued_at: datetime
    expires_at: datetime
    email: str | None = None
    token_type: str = "Bearer"
    jti: str = field(default_factory=lambda: str(uuid.uuid4()))

    def is_expired(self) -> bool:
        return datetime.now(UTC) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "token_type": self.token_type,
            "jti": self.jti,
        }


class AuthService:
    """
    Token generation and validation.

    Generation exists for tests and local tooling; production tokens come
    from the auth provider signed with the same key.
    """

    TOKEN_EXPIRY_DAYS = 30

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ConfigurationError(
                "SPENDFLOW_API_SECRET_KEY is required. Set it to a cryptographically random string."
            )
        self.secret_key = secret_key

    def generate_token(
        self, user_id: str, email: str | None = None, expires_in: timedelta | None = None
    ) -> AuthToken:
        now = datetime.now(UTC)
        token = AuthToken(
            user_id=user_id,
            email=email,
            issued_at=now,
            expires_at=now + (expires_in or timedelta(days=self.TOKEN_EXPIRY_DAYS)),
        )
        logger.info("Generated token for user_hash=%s", hash_uid(user_id))
        return token

    def encode_token(self, token: AuthToken) -> str:
        payload: dict[str, Any] = {
            "sub": token.user_id,
            "iat": token.issued_at,
            "exp": token.expires_at,
            "type": token.token_type,
            "jti": token.jti,
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
        }
        if token.email:
            payload["email"] = token.email
        return pyjwt.encode(payload, self.secret_key, algorithm="HS256")

    def issue(self, user_id: str, email: str | None = None) -> str:
        """Generate and encode in one step."""
        return self.encode_token(self.generate_token(user_id, email))

    def decode_token(self, jwt_token: str) -> AuthToken | None:
        """
        Decode and verify a JWT.

        Returns:
            AuthToken, or None if the token is invalid or expired
        """
        try:
            payload = pyjwt.decode(
                jwt_token,
                self.secret_key,
                algorithms=["HS256"],
                audience=TOKEN_AUDIENCE,
                issuer=TOKEN_ISSUER,
            )
            return AuthToken(
                user_id=str(payload["sub"]),
                email=payload.get("email"),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
                token_type=payload.get("type", "Bearer"),
                jti=payload.get("jti", ""),
            )
        except pyjwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except (pyjwt.InvalidTokenError, KeyError) as e:
            logger.warning("Token decode error: %s", type(e).__name__)
            return None

    def authenticate_request(self, authorization_header: str | None) -> AuthToken | None:
        """Authenticate an ``Authorization: Bearer <jwt>`` header."""
        if not authorization_header or not authorization_header.startswith("Bearer "):
            return None
        return self.decode_token(authorization_header.removeprefix("Bearer ").strip())


__all__ = ["AuthService", "AuthToken", "TOKEN_AUDIENCE", "TOKEN_ISSUER"]
