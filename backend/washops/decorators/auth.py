from functools import wraps
from flask import g
from washops.errors import PermissionDenied
from washops.services.policy import current_session


def require_actor(fn):
    """Resolve the caller's session into ``g.actor`` or fail with 401."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.actor = current_session()
        return fn(*args, **kwargs)
    return wrapper


def require_permissions(*codes: str):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            g.actor = current_session()
            if not g.actor.has_all(codes):
                raise PermissionDenied('Missing permission')
            return fn(*args, **kwargs)
        return wrapper
    return outer

