from .service import AuthError, AuthService

__all__ = ["AuthError", "AuthService"]
