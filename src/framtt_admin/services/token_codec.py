"""
Session token codec.

Encodes token claims as signed JWTs and decodes them back, verifying the
signature against the current signing secret and, during a rotation grace
period, the previous one.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from pydantic import ValidationError

from framtt_admin.config import Settings
from framtt_admin.errors import EncodingError, Expired, InvalidSignature, Malformed
from framtt_admin.logging_config import LogEventType, get_logger
from framtt_admin.models.token import (
    ImpersonationClaims,
    IssuedToken,
    NormalClaims,
    TokenClaims,
    token_claims_adapter,
)
from framtt_admin.services.signing_keys import SigningSecretStore

logger = get_logger(__name__)


def _epoch(value: datetime) -> int:
    # Claim models hold whole-second UTC values, so this is exact
    return int(value.timestamp())


class TokenCodec:
    """
    Turns claim sets into signed strings and back.

    Stateless apart from the injected secret store; every decode works on a
    single snapshot of the secret set.
    """

    def __init__(
        self,
        secret_store: SigningSecretStore,
        algorithm: str = "HS256",
        issuer: str = "framtt-superadmin",
        audience: str = "framtt-users",
    ) -> None:
        self._secret_store = secret_store
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    @classmethod
    def from_settings(
        cls, settings: Settings, secret_store: SigningSecretStore
    ) -> "TokenCodec":
        return cls(
            secret_store,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    @property
    def secret_store(self) -> SigningSecretStore:
        return self._secret_store

    def encode(self, claims: TokenClaims | Mapping[str, Any], secret: str | None = None) -> str:
        """
        Sign ``claims`` with ``secret`` (the current secret by default).

        Raises:
            EncodingError: If the claims are malformed.
        """
        if not isinstance(claims, (NormalClaims, ImpersonationClaims)):
            try:
                claims = token_claims_adapter.validate_python(claims)
            except ValidationError as e:
                raise EncodingError(f"Malformed token claims: {e.error_count()} error(s)") from e

        payload: dict[str, Any] = {
            "sub": claims.subject,
            "role": claims.role.value,
            "kind": claims.kind,
            "iat": _epoch(claims.issued_at),
            "exp": _epoch(claims.expires_at),
            "iss": self._issuer,
            "aud": self._audience,
        }
        if isinstance(claims, ImpersonationClaims):
            payload["imp"] = claims.impersonator
            if claims.session_id:
                payload["sid"] = claims.session_id

        key = secret or self._secret_store.snapshot().current.value
        return jwt.encode(payload, key, algorithm=self._algorithm)

    def issue(self, claims: TokenClaims) -> IssuedToken:
        """Encode ``claims`` and wrap them for the caller."""
        token = self.encode(claims)
        remaining = claims.expires_at - datetime.now(timezone.utc)
        return IssuedToken(
            access_token=token,
            expires_in=max(int(remaining.total_seconds()), 0),
            claims=claims,
        )

    def decode(self, token: str) -> TokenClaims:
        """
        Verify ``token`` and return its claims.

        Raises:
            Malformed: The token is not a JWT or its claims have the wrong shape.
            InvalidSignature: Neither the current nor the previous secret matches.
            Expired: The signature matched but the token is past its expiry.
        """
        if not token:
            raise Malformed("Empty token")
        try:
            jwt.get_unverified_claims(token)
        except JWTError as e:
            raise Malformed("Token could not be parsed") from e

        snapshot = self._secret_store.snapshot()
        payload: dict[str, Any] | None = None
        for index, secret in enumerate(snapshot.verification_secrets()):
            try:
                payload = jwt.decode(
                    token,
                    secret.value,
                    algorithms=[self._algorithm],
                    audience=self._audience,
                    issuer=self._issuer,
                )
            except ExpiredSignatureError as e:
                raise Expired() from e
            except JWTClaimsError as e:
                raise Malformed(f"Invalid token claims: {e}") from e
            except JWTError:
                continue

            if index > 0:
                logger.event(
                    LogEventType.SECRET_FALLBACK,
                    "Token verified with previous signing secret",
                    level=logging.INFO,
                )
            break

        if payload is None:
            raise InvalidSignature()

        return self._to_claims(payload)

    def _to_claims(self, payload: dict[str, Any]) -> TokenClaims:
        data: dict[str, Any] = {
            "subject": payload.get("sub"),
            "role": payload.get("role"),
            "kind": payload.get("kind"),
            "issued_at": payload.get("iat"),
            "expires_at": payload.get("exp"),
        }
        if "imp" in payload:
            data["impersonator"] = payload["imp"]
        if "sid" in payload:
            data["session_id"] = payload["sid"]

        try:
            return token_claims_adapter.validate_python(data)
        except ValidationError as e:
            raise Malformed("Token claims do not match the expected structure") from e
