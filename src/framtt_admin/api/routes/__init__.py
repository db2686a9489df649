"""API route modules."""

from framtt_admin.api.routes import admin, auth, health, impersonation

__all__ = ["admin", "auth", "health", "impersonation"]
