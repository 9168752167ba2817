# auth.py
"""Actor identity as handed over by the upstream identity service.

Authentication itself lives elsewhere; by the time a request reaches us the
gateway has set X-Actor-Id / X-Actor-Role. The admin token header (or
cookie) is still honoured for operator scripts.
"""
from collections import namedtuple
from functools import wraps

from flask import current_app, g, request

from errors import AuthorizationError

ROLES = ('patient', 'doctor', 'nurse', 'reception', 'admin', 'lab', 'pharmacy')
STAFF_ROLES = frozenset(r for r in ROLES if r != 'patient')

Actor = namedtuple('Actor', ['id', 'role'])

ANONYMOUS = Actor(None, None)


def is_staff(actor):
    return actor.role in STAFF_ROLES


def actor_from_request():
    token = request.headers.get('X-Admin-Token') or request.cookies.get('admin_token')
    admin_token = current_app.config.get('ADMIN_TOKEN')
    if token and admin_token and str(token) == str(admin_token):
        return Actor(request.headers.get('X-Actor-Id') or 'admin', 'admin')
    actor_id = request.headers.get('X-Actor-Id')
    role = (request.headers.get('X-Actor-Role') or '').strip().lower()
    if not actor_id:
        return ANONYMOUS
    if role not in ROLES:
        role = 'patient'
    return Actor(actor_id, role)


def current_actor():
    if 'actor' not in g:
        g.actor = actor_from_request()
    return g.actor


def require_roles(*roles):
    allowed = frozenset(roles)

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            actor = current_actor()
            if actor.id is None:
                raise AuthorizationError('authentication required')
            if actor.role not in allowed:
                raise AuthorizationError(f'role {actor.role} may not perform this action')
            return view(*args, **kwargs)
        return wrapper
    return decorator
