"""
Principal models.

Principals are owned by the user-management subsystem; this package only
reads them to authenticate and to check impersonation privileges.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Closed set of platform roles."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    CSM = "csm"
    USER = "user"


class PrincipalStatus(str, Enum):
    """Account status. Only active principals may authenticate."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


# Higher value = more privilege
DEFAULT_ROLE_PRIVILEGES: dict[Role, int] = {
    Role.SUPERADMIN: 4,
    Role.ADMIN: 3,
    Role.CSM: 2,
    Role.USER: 1,
}

DEFAULT_IMPERSONATOR_ROLES: list[Role] = [Role.SUPERADMIN, Role.ADMIN]


class Principal(BaseModel):
    """A user identity as seen by the authentication core."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Opaque principal ID")
    email: str = Field(description="Login email (stored lowercase)")
    full_name: str | None = Field(default=None, description="Display name")
    role: Role = Field(description="Platform role")
    status: PrincipalStatus = Field(
        default=PrincipalStatus.ACTIVE,
        description="Account status",
    )
    password_hash: str | None = Field(
        default=None,
        exclude=True,
        repr=False,
        description="Password digest (never serialized)",
    )

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.ACTIVE
