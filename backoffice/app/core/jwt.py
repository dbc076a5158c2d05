"""
JWT token utilities for authentication.

This module mints and verifies the access/refresh token pair. The two token
types are signed with distinct secrets, so one can never pass for the other.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt

from backoffice.app.core.config import Settings, settings as default_settings
from backoffice.app.core.exceptions import InvalidToken
from backoffice.app.core.timeutils import utcnow

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


class TokenIssuer:
    """
    Issues and verifies signed, time-boxed tokens.

    Payload:
        {
            "sub": "42",
            "user_id": 42,
            "type": "access" | "refresh",
            "jti": "<uuid4 hex>",
            "iat": 1234567890,
            "exp": 1234567890
        }
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config

    def _secret_for(self, token_type: str) -> str:
        if token_type == ACCESS:
            return self.config.secret_key
        if token_type == REFRESH:
            return self.config.refresh_secret_key
        raise ValueError(f"Unknown token type: {token_type}")

    def _lifetime_for(self, token_type: str) -> timedelta:
        if token_type == ACCESS:
            return timedelta(hours=self.config.access_token_expire_hours)
        return timedelta(days=self.config.refresh_token_expire_days)

    def create_token(
        self,
        user_id: int,
        token_type: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """
        Create a signed token of the given type.

        Args:
            user_id: Identity the token is bound to
            token_type: "access" or "refresh"
            expires_delta: Optional custom lifetime (defaults from settings)

        Returns:
            Encoded JWT string
        """
        now = utcnow()
        expire = now + (expires_delta or self._lifetime_for(token_type))
        to_encode: Dict[str, Any] = {
            "sub": str(user_id),
            "user_id": user_id,
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": expire,
        }
        return jwt.encode(to_encode, self._secret_for(token_type), algorithm=self.config.algorithm)

    def create_pair(self, user_id: int) -> TokenPair:
        """Mint a fresh access + refresh pair for a login or refresh."""
        return TokenPair(
            access_token=self.create_token(user_id, ACCESS),
            refresh_token=self.create_token(user_id, REFRESH),
        )

    def verify(self, token: str, expected_type: str) -> Dict[str, Any]:
        """
        Decode and validate a token of the expected type.

        Raises:
            InvalidToken: bad signature, expired, wrong "type" claim or no user_id
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_for(expected_type),
                algorithms=[self.config.algorithm],
            )
        except JWTError:
            raise InvalidToken()

        if payload.get("type") != expected_type:
            raise InvalidToken()

        if not isinstance(payload.get("user_id"), int):
            raise InvalidToken("Invalid token payload")

        return payload


def get_token_issuer() -> TokenIssuer:
    """FastAPI dependency for the token issuer."""
    return TokenIssuer()
