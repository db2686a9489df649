"""
Session token claim models.

A token is either a normal session or an impersonation session nested
inside one. Both share a single decode path; ``kind`` is the discriminator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from framtt_admin.models.principal import Role


class TokenKind(str, Enum):
    """Token flavour."""

    NORMAL = "normal"
    IMPERSONATION = "impersonation"


class _ClaimsBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    subject: str = Field(min_length=1, description="Effective principal ID")
    role: Role = Field(description="Role snapshot at issuance")
    issued_at: datetime = Field(description="Issued-at timestamp (UTC)")
    expires_at: datetime = Field(description="Expiry timestamp (UTC)")

    @field_validator("issued_at", "expires_at", mode="after")
    @classmethod
    def _to_wire_precision(cls, value: datetime) -> datetime:
        # JWT timestamps are whole epoch seconds; naive values are taken as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(microsecond=0)

    @model_validator(mode="after")
    def _check_lifetime(self):
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be after issued_at")
        return self


class NormalClaims(_ClaimsBase):
    """Claims of a regular login session."""

    kind: Literal["normal"] = "normal"

    @property
    def is_impersonation(self) -> bool:
        return False

    @property
    def real_subject(self) -> str:
        return self.subject


class ImpersonationClaims(_ClaimsBase):
    """Claims of an impersonation session. ``subject`` is the target."""

    kind: Literal["impersonation"] = "impersonation"
    impersonator: str = Field(min_length=1, description="Real, privileged principal ID")
    session_id: str | None = Field(
        default=None, description="Impersonation record backing this token"
    )

    @property
    def is_impersonation(self) -> bool:
        return True

    @property
    def real_subject(self) -> str:
        return self.impersonator


TokenClaims = Annotated[
    Union[NormalClaims, ImpersonationClaims],
    Field(discriminator="kind"),
]

token_claims_adapter: TypeAdapter[TokenClaims] = TypeAdapter(TokenClaims)


class IssuedToken(BaseModel):
    """A freshly minted token together with its claims."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(description="Signed JWT")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(description="Seconds until expiry")
    claims: TokenClaims
