"""API routers package."""

from case_portal.routers import applications, sync

__all__ = ["applications", "sync"]
