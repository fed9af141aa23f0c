"""Authorization error taxonomy.

Every error is a werkzeug HTTPException so the unified JSON error handler in
``washops.create_app`` renders it without a per-view try/except. Services raise
these directly; checks (``resolve`` / ``ActorSession.has``) never do.
"""
from __future__ import annotations
from typing import Optional
from werkzeug.exceptions import HTTPException


class AuthzError(HTTPException):
    code = 400
    error_code = 'AUTHZ_ERROR'
    default_detail = 'Authorization error'

    def __init__(self, description: Optional[str] = None):
        super().__init__(description=description or self.default_detail)


class ValidationError(AuthzError):
    code = 400
    error_code = 'VALIDATION_ERROR'
    default_detail = 'Invalid request'


class Unauthenticated(AuthzError):
    code = 401
    error_code = 'UNAUTHENTICATED'
    default_detail = 'Authentication required'


class PermissionDenied(AuthzError):
    code = 403
    error_code = 'PERMISSION_DENIED'
    default_detail = 'Missing permission'


class NotFound(AuthzError):
    # Also used for scope violations so other tenants' roles stay invisible.
    code = 404
    error_code = 'NOT_FOUND'
    default_detail = 'Not found'


class Immutable(AuthzError):
    code = 409
    error_code = 'IMMUTABLE'
    default_detail = 'System roles cannot be changed this way'


class Conflict(AuthzError):
    code = 409
    error_code = 'CONFLICT'
    default_detail = 'Conflicting state'


class ConcurrentModification(Conflict):
    error_code = 'CONCURRENT_MODIFICATION'
    default_detail = 'Role was modified concurrently; reload and retry'


class StaleSession(AuthzError):
    code = 409
    error_code = 'STALE_SESSION'
    default_detail = 'Session is stale; re-resolve before retrying'


class InvalidLevel(AuthzError):
    code = 422
    error_code = 'INVALID_LEVEL'
    default_detail = 'Role level out of allowed range'


__all__ = [
    'AuthzError', 'ValidationError', 'Unauthenticated', 'PermissionDenied', 'NotFound',
    'Immutable', 'Conflict', 'ConcurrentModification', 'StaleSession', 'InvalidLevel',
]
