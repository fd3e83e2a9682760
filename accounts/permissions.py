# accounts/permissions.py
"""
Acting user and role checks.

Domain services never read the HTTP request. Views turn ``request.user``
into an ``ActingUser(id, role)`` and pass it down explicitly.
"""
from functools import wraps

from rest_framework.exceptions import NotAuthenticated
from rest_framework.permissions import BasePermission

from redblood.exceptions import Unauthorized
from store.base import get_store

DONOR = 'donor'
RECIPIENT = 'recipient'
ADMIN = 'admin'
ROLES = (DONOR, RECIPIENT, ADMIN)


class ActingUser:
    """The authenticated caller as seen by the domain core."""

    is_authenticated = True
    is_anonymous = False

    def __init__(self, id, role=DONOR):
        self.id = id
        self.role = role or DONOR

    @property
    def pk(self):
        return self.id

    @property
    def is_admin(self):
        return self.role == ADMIN

    def __eq__(self, other):
        return isinstance(other, ActingUser) and (self.id, self.role) == (other.id, other.role)

    def __hash__(self):
        return hash((self.id, self.role))

    def __repr__(self):
        return f"ActingUser(id={self.id!r}, role={self.role!r})"


def acting_user_from(request):
    """
    Build the acting user from an authenticated DRF request.

    JWT users carry the role as a token claim. Without a claim the role
    stored on the user's profile is used.
    """
    user = request.user
    if not user or not user.is_authenticated:
        raise NotAuthenticated('Authentication required')
    if isinstance(user, ActingUser):
        return user

    user_id = str(user.id)
    role = getattr(user, 'role', None)
    if not role:
        profile = get_store().get('users', user_id)
        role = profile.get('role') if profile else None
    return ActingUser(user_id, role)


def ensure_owner_or_admin(acting_user, owner_id, message='You are not authorized to perform this action'):
    if acting_user.is_admin or acting_user.id == owner_id:
        return
    raise Unauthorized(message)


def ensure_admin(acting_user):
    if not acting_user.is_admin:
        raise Unauthorized('Admin access required')


class IsAdminRole(BasePermission):
    """Allow only callers whose role is admin."""
    message = 'Admin access required'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return acting_user_from(request).is_admin


def role_required(required_role):
    """
    Decorator for function views restricted to one role. Admins pass
    every role check.
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            acting_user = acting_user_from(request)
            if acting_user.role != required_role and not acting_user.is_admin:
                raise Unauthorized(f"Access denied. This action is for {required_role}s only.")
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator
