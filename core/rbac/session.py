"""
Session resolution from the identity provider's session token.

The token arrives as `Authorization: Bearer <token>` or in the session
cookie. Its `sub` claim is the principal id; a role may be carried in the
`metadata`, `public_metadata` or `app_metadata` claims.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt

from .roles import normalize_role

logger = logging.getLogger(__name__)


@dataclass
class SessionClaims:
    """Verified session identity."""
    user_id: str
    role: Optional[str] = None
    email: Optional[str] = None
    issued_at: Optional[int] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    def claims_age_seconds(self, now: Optional[float] = None) -> Optional[float]:
        if self.issued_at is None:
            return None
        return (now if now is not None else time.time()) - self.issued_at


def _role_from_claims(payload: Dict[str, Any]) -> Optional[str]:
    """
    First valid role found in, in order: metadata.role,
    public_metadata.role, app_metadata.role, role.
    """
    for key in ("metadata", "public_metadata", "app_metadata"):
        container = payload.get(key)
        if isinstance(container, dict) and "role" in container:
            role = normalize_role(container["role"])
            if role:
                return role
    return normalize_role(payload.get("role"))


class SessionResolver:
    """Verifies session tokens and extracts the principal id and role claims."""

    def __init__(
        self,
        secret: Optional[str] = None,
        public_key: Optional[str] = None,
        algorithm: str = "HS256",
        cookie_name: str = "__session",
        leeway_seconds: int = 5,
    ):
        """
        Initialize the session resolver.

        Args:
            secret: Shared secret for HMAC-signed tokens
            public_key: PEM public key for RSA/EC-signed tokens (preferred when set)
            algorithm: Expected signing algorithm
            cookie_name: Cookie carrying the session token
            leeway_seconds: Clock skew tolerated on exp/iat/nbf
        """
        self.key = public_key or secret
        self.algorithm = algorithm.upper()
        self.cookie_name = cookie_name
        self.leeway_seconds = leeway_seconds

        if not self.key:
            logger.warning("No session verification key configured, all sessions will be rejected")

    def extract_token(
        self,
        authorization_header: Optional[str],
        cookies: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        if authorization_header:
            if authorization_header.startswith("Bearer "):
                token = authorization_header[7:].strip()
                if token:
                    return token
            else:
                logger.warning("Invalid Authorization header format (missing 'Bearer')")

        if cookies:
            token = cookies.get(self.cookie_name)
            if token:
                return token
        return None

    def decode(self, token: str) -> Optional[SessionClaims]:
        """Verify a token. Returns None for anything that does not verify."""
        if not self.key:
            return None

        try:
            payload = jwt.decode(
                token,
                self.key,
                algorithms=[self.algorithm],
                leeway=self.leeway_seconds,
                options={"verify_exp": True, "verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid session token: {e}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Session token missing 'sub' claim")
            return None

        issued_at = payload.get("iat")
        return SessionClaims(
            user_id=str(user_id),
            role=_role_from_claims(payload),
            email=payload.get("email"),
            issued_at=int(issued_at) if isinstance(issued_at, (int, float)) else None,
            claims=payload,
        )

    def resolve(
        self,
        authorization_header: Optional[str] = None,
        cookies: Optional[Dict[str, str]] = None,
    ) -> Optional[SessionClaims]:
        token = self.extract_token(authorization_header, cookies)
        if not token:
            return None
        return self.decode(token)
