"""JWT token service.

Tokens are issued by the login collaborator and presented by clients when
opening the chat WebSocket (``?token=``) or calling the REST endpoints
(``Authorization: Bearer``). The chat core only ever sees the validated
participant id.

Claims:
    user_id: integer participant id
    exp:     expiry (seconds since epoch)
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from duochat.chat.errors import AuthInvalid
from duochat.config import get_config

logger = logging.getLogger(__name__)


class TokenService:
    """Issues and validates HS256 access tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: int = 60,
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    @classmethod
    def from_config(cls) -> "TokenService":
        config = get_config()
        return cls(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.secrets.jwt.algorithm,
            expire_minutes=config.auth.token_expire_minutes,
        )

    def issue(self, user_id: int, expires_in: Optional[timedelta] = None) -> str:
        """Create a signed token for ``user_id``."""
        if expires_in is None:
            expires_in = timedelta(minutes=self.expire_minutes)
        claims = {
            "user_id": user_id,
            "exp": datetime.now(timezone.utc) + expires_in,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> int:
        """Validate a token and return the participant id it carries.

        Raises:
            AuthInvalid: Missing, malformed, badly signed or expired token,
                or a token without an integer ``user_id`` claim.
        """
        if not token:
            raise AuthInvalid("No token provided")
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthInvalid("Token has expired") from None
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected token: %s", exc)
            raise AuthInvalid("Token is invalid") from None

        user_id = claims.get("user_id")
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
            raise AuthInvalid("Invalid token claims")
        return user_id
