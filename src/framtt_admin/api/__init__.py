"""
Framtt admin API.

Auth, impersonation and admin endpoints over the session core.
"""

from framtt_admin.api.app import create_app

__all__ = ["create_app"]
