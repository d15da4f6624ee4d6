"""Session token issuance and verification (HS256 JWT)."""

import time
from dataclasses import dataclass, field
from typing import Optional

import jwt


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpired(TokenError):
    """Signature is valid but the token is past its expiry."""


class TokenMalformed(TokenError):
    """Token is unsigned, tampered with or otherwise undecodable."""


@dataclass(frozen=True)
class TokenClaims:
    """Decoded session claims."""

    account_id: str
    email: str
    role: str
    profile_id: Optional[str]
    issued_at: int
    expires_at: int

    def remaining(self, now: Optional[float] = None) -> float:
        return self.expires_at - (now if now is not None else time.time())


@dataclass(frozen=True)
class TokenSettings:
    """Everything the issuer needs; built once at startup from Settings."""

    secret: str
    algorithm: str = "HS256"
    default_ttl: int = 24 * 3600
    role_ttls: dict[str, int] = field(default_factory=dict)
    refresh_threshold: int = 30 * 60


class TokenIssuer:
    """Signs and verifies session tokens.

    The signing key is fixed for the life of the process; rotating it
    requires a restart and invalidates every outstanding token.
    """

    def __init__(self, config: TokenSettings):
        if not config.secret:
            raise ValueError("Token signing secret must not be empty")
        self._config = config

    def ttl_for(self, role: str) -> int:
        return self._config.role_ttls.get(role, self._config.default_ttl)

    def issue(
        self,
        account_id: str,
        email: str,
        role: str,
        profile_id: Optional[str] = None,
        now: Optional[float] = None,
    ) -> str:
        """Sign a token carrying the account id, email, role and profile id."""
        issued_at = int(now if now is not None else time.time())
        payload = {
            "sub": account_id,
            "email": email,
            "role": role,
            "profile_id": profile_id,
            "iat": issued_at,
            "exp": issued_at + self.ttl_for(role),
        }
        return jwt.encode(payload, self._config.secret, algorithm=self._config.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Decode a token.

        Raises:
            TokenExpired: signature valid, expiry passed
            TokenMalformed: anything else that fails to decode
        """
        try:
            data = jwt.decode(
                token,
                self._config.secret,
                algorithms=[self._config.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired(str(e)) from e
        except jwt.PyJWTError as e:
            raise TokenMalformed(str(e)) from e

        if "role" not in data or "email" not in data:
            raise TokenMalformed("Token is missing required claims")

        return TokenClaims(
            account_id=data["sub"],
            email=data["email"],
            role=data["role"],
            profile_id=data.get("profile_id"),
            issued_at=data["iat"],
            expires_at=data["exp"],
        )

    def should_refresh(self, claims: TokenClaims, now: Optional[float] = None) -> bool:
        """True when less than the refresh threshold of lifetime remains."""
        return claims.remaining(now) < self._config.refresh_threshold

    def refresh(self, claims: TokenClaims) -> str:
        return self.issue(claims.account_id, claims.email, claims.role, claims.profile_id)
