"""
Admin API endpoints.

Signing secret rotation for superadmins.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from framtt_admin.api.deps import get_services, require_superadmin
from framtt_admin.models.impersonation import ActorContext
from framtt_admin.services.container import AppServices
from framtt_admin.services.signing_keys import rotate_signing_secret

router = APIRouter()


class RotationResponse(BaseModel):
    """Result of a signing secret rotation."""

    message: str
    rotated_at: datetime
    previous_rotated_at: datetime | None = None


@router.post("/signing-secret/rotate", response_model=RotationResponse)
async def rotate_secret(
    actor: Annotated[ActorContext, Depends(require_superadmin)],
    services: Annotated[AppServices, Depends(get_services)],
) -> RotationResponse:
    """
    Rotate the token signing secret.

    Tokens signed with the replaced secret keep verifying until the next
    rotation. The new secret lives in this process only; persist a secret
    made with ``framtt-admin generate-secret`` in the deployment environment.
    """
    snapshot = await rotate_signing_secret(
        services.secrets,
        services.audit,
        actor_id=actor.real_user_id,
        audit_timeout=services.settings.audit_timeout_seconds,
    )
    return RotationResponse(
        message="Signing secret rotated",
        rotated_at=snapshot.current.rotated_at,
        previous_rotated_at=snapshot.previous.rotated_at if snapshot.previous else None,
    )
