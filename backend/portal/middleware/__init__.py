from portal.middleware.access_guard import AccessGuardMiddleware

__all__ = ["AccessGuardMiddleware"]
