"""
Impersonation API endpoints.

Start and stop support sessions, list them for review, and let superadmins
force end a session.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from framtt_admin.api.deps import client_context, get_actor, get_services, require_token
from framtt_admin.models.impersonation import (
    ActorContext,
    ImpersonationGrant,
    ImpersonationHistory,
    ImpersonationHistoryQuery,
    ImpersonationRecord,
    ImpersonationStartRequest,
    ImpersonationStatus,
    ImpersonationStopResult,
)
from framtt_admin.services.container import AppServices

router = APIRouter()


class ImpersonationSessionList(BaseModel):
    """List of impersonation sessions."""

    sessions: list[ImpersonationRecord]
    total: int


@router.post("/start", response_model=ImpersonationGrant)
async def start_impersonation(
    body: ImpersonationStartRequest,
    request: Request,
    token: Annotated[str, Depends(require_token)],
    services: Annotated[AppServices, Depends(get_services)],
) -> ImpersonationGrant:
    """
    Start impersonating a lower-privileged user.

    Requires a normal session token of a superadmin or admin. The returned
    token acts as the target until it expires or the session is stopped.
    """
    return await services.impersonation.start(
        token,
        body.target_user_id,
        body.reason,
        **client_context(request),
    )


@router.post("/stop", response_model=ImpersonationStopResult)
async def stop_impersonation(
    token: Annotated[str, Depends(require_token)],
    services: Annotated[AppServices, Depends(get_services)],
) -> ImpersonationStopResult:
    """
    End the current impersonation session.

    Returns a fresh session token for the impersonator.
    """
    return await services.impersonation.stop(token)


@router.get("/active", response_model=ImpersonationSessionList)
async def list_active_sessions(
    actor: Annotated[ActorContext, Depends(get_actor)],
    services: Annotated[AppServices, Depends(get_services)],
) -> ImpersonationSessionList:
    """
    List open impersonation sessions.

    Superadmins see every session. Admins see only their own.
    """
    sessions = await services.impersonation.list_active(actor)
    return ImpersonationSessionList(sessions=sessions, total=len(sessions))


@router.get("/history", response_model=ImpersonationHistory)
async def impersonation_history(
    actor: Annotated[ActorContext, Depends(get_actor)],
    services: Annotated[AppServices, Depends(get_services)],
    status: ImpersonationStatus | None = None,
    impersonator_id: str | None = None,
    target_id: str | None = None,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ImpersonationHistory:
    """Paginated impersonation history, newest first."""
    query = ImpersonationHistoryQuery(
        status=status,
        impersonator_id=impersonator_id,
        target_id=target_id,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    )
    return await services.impersonation.history(actor, query)


@router.post("/force-end/{session_id}", response_model=ImpersonationRecord)
async def force_end_session(
    session_id: str,
    actor: Annotated[ActorContext, Depends(get_actor)],
    services: Annotated[AppServices, Depends(get_services)],
) -> ImpersonationRecord:
    """
    Force end another staff member's impersonation session.

    Superadmin only. The session's token is rejected from then on.
    """
    return await services.impersonation.force_end(actor, session_id)
