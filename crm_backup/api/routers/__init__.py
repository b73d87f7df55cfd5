"""API routers."""

from . import backup, health, jobs

__all__ = ["backup", "health", "jobs"]
