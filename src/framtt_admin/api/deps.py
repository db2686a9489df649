"""
API dependencies for authentication and authorization.

Requests authenticate with a bearer token issued by ``/api/v1/auth/login``
or ``/api/v1/impersonation/start``. Impersonation tokens are only accepted
while their session is still open in the audit log.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from framtt_admin.models.impersonation import ActorContext
from framtt_admin.models.principal import Role
from framtt_admin.services.container import AppServices

# Security scheme for Bearer tokens
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> AppServices:
    """Service graph attached to the running application."""
    return request.app.state.services


def client_context(request: Request) -> dict[str, str | None]:
    """Client IP address and user agent for audit records."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def require_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    """Raw bearer token. Validation happens in the service that consumes it."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please log in or provide a valid token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_actor(
    token: Annotated[str, Depends(require_token)],
    services: Annotated[AppServices, Depends(get_services)],
) -> ActorContext:
    """
    Get the current actor context, handling impersonation.

    Returns an ActorContext with both real identity and effective identity.
    """
    return await services.impersonation.resolve_actor(token)


async def require_superadmin(
    actor: Annotated[ActorContext, Depends(get_actor)],
) -> ActorContext:
    """Require a superadmin acting as themselves."""
    if actor.is_impersonating or actor.real_role != Role.SUPERADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadmin access required",
        )
    return actor
