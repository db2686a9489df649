"""
Framtt Admin - session and impersonation core for the Framtt admin backend.

This package authenticates staff and customer principals and lets privileged
staff temporarily act as another user for support, including:

- Signed session tokens with signing secret rotation
- Email/password login backed by bcrypt digests
- Audited, time-limited impersonation sessions
- A FastAPI surface and a typer CLI
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
