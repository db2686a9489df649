"""
Auth API endpoints.

Email/password login and the identity behind the current token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from framtt_admin.api.deps import client_context, get_actor, get_services
from framtt_admin.models.impersonation import ActorContext
from framtt_admin.models.principal import Principal
from framtt_admin.services.container import AppServices

router = APIRouter()


class LoginRequest(BaseModel):
    """Request body for login."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Issued session token and the authenticated user."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Principal


class MeResponse(BaseModel):
    """Current actor and the effective user's profile."""

    actor: ActorContext
    user: Principal | None = None


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    services: Annotated[AppServices, Depends(get_services)],
) -> LoginResponse:
    """Authenticate with email and password and receive a session token."""
    issued = await services.sessions.login(
        body.email,
        body.password,
        **client_context(request),
    )
    user = await services.principals.find_by_id(issued.claims.subject)
    return LoginResponse(
        access_token=issued.access_token,
        token_type=issued.token_type,
        expires_in=issued.expires_in,
        user=user,
    )


@router.get("/me", response_model=MeResponse)
async def me(
    actor: Annotated[ActorContext, Depends(get_actor)],
    services: Annotated[AppServices, Depends(get_services)],
) -> MeResponse:
    """
    Return the current actor.

    While impersonating, ``user`` is the impersonated user and
    ``actor.real_user_id`` the staff member behind the session.
    """
    user = await services.principals.find_by_id(actor.effective_user_id)
    return MeResponse(actor=actor, user=user)
