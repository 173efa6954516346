"""
Security utilities for the peripheral provider.

This module mints the HS256 access tokens the API expects and provides the
request editor that injects them as bearer credentials.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx
import jwt
import structlog


class SecurityError(Exception):
    """Raised when token signing or verification fails."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenSigner:
    """
    HS256 JSON Web Token signer.

    Tokens carry the issuer, issued-at and expiry claims and are signed
    with a shared secret known to the API.
    """

    ALGORITHM = "HS256"
    REQUIRED_CLAIMS = ["iss", "iat", "exp"]

    def __init__(self,
                 secret: str,
                 issuer: str = "peripheral",
                 ttl: timedelta = timedelta(hours=1),
                 clock: Optional[Callable[[], datetime]] = None,
                 leeway: timedelta = timedelta(0)) -> None:
        """
        Initialize token signer.

        Args:
            secret: Shared signing secret
            issuer: Value of the ``iss`` claim
            ttl: Token lifetime
            clock: Provider of the minting time (timezone-aware)
            leeway: Clock skew tolerated when verifying time claims

        Raises:
            SecurityError: If the secret is blank or the lifetime is not positive
        """
        if not secret or not secret.strip():
            raise SecurityError("Signing secret is required")
        if ttl <= timedelta(0):
            raise SecurityError("Token lifetime must be positive")

        self._secret = secret
        self.issuer = issuer
        self.ttl = ttl
        self.clock = clock or _utcnow
        self.leeway = leeway
        self.logger = structlog.get_logger().bind(component="token_signer")

    def sign(self, extra_claims: Optional[Dict[str, Any]] = None) -> str:
        """
        Mint a signed token.

        Args:
            extra_claims: Additional claims merged over the standard ones

        Returns:
            Compact serialized JWT

        Raises:
            SecurityError: If the claims cannot be encoded
        """
        now = self.clock()
        claims: Dict[str, Any] = {
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + self.ttl).timestamp()),
        }
        if extra_claims:
            claims.update(extra_claims)

        try:
            token = jwt.encode(claims, self._secret, algorithm=self.ALGORITHM)
        except (jwt.PyJWTError, TypeError) as e:
            raise SecurityError(f"Failed to encode token: {e}") from e

        self.logger.debug("Access token minted", issuer=self.issuer, exp=claims["exp"])
        return token

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify a token minted with the same secret and issuer.

        Time claims are checked against the current time.

        Args:
            token: Compact serialized JWT

        Returns:
            The token claims

        Raises:
            SecurityError: If the token is malformed, forged, expired or
                from another issuer
        """
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self.ALGORITHM],
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": self.REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise SecurityError("Token has expired") from e
        except jwt.InvalidSignatureError as e:
            raise SecurityError("Token signature mismatch") from e
        except jwt.PyJWTError as e:
            raise SecurityError(f"Invalid token: {e}") from e


class BearerTokenEditor:
    """
    Request editor injecting a bearer access token.

    A fresh token is minted for every request, so long-running hosts never
    send an expired credential and the editor keeps no state between calls.
    """

    def __init__(self, signer: TokenSigner) -> None:
        self.signer = signer

    def __call__(self, request: httpx.Request) -> None:
        request.headers["Authorization"] = f"Bearer {self.signer.sign()}"
