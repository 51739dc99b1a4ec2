"""Authentication helpers and dependencies for the portal guard service."""

from .schemas import AuthContext

__all__ = ["AuthContext"]
