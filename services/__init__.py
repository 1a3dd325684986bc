from .threads import ThreadService
from .auth import AuthService

__all__ = ["ThreadService", "AuthService"]
