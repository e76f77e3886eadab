# Overview: Service-layer operations for permission; answers "may this actor mutate sales and stock".

"""
Privilege checks

- Fail closed: an unknown, inactive or soft-deleted user is never privileged.
- Mutating engine operations require the ADMIN role; SELLER may read.
- All lookups are scoped to the caller's organization when one is given.
"""

from __future__ import annotations

from flask import current_app

from ..errors import PermissionDenied
from ..models import User
from ..models.auth import ROLE_ADMIN


def get_actor(session, actor_id: int | None, organization_id: int | None = None) -> User | None:
    if actor_id is None:
        return None
    query = session.query(User).filter(User.id == actor_id, User.is_deleted.is_(False))
    if organization_id is not None:
        query = query.filter(User.org_id == organization_id)
    return query.first()


def is_privileged_actor(session, actor_id: int | None, organization_id: int | None = None) -> bool:
    user = get_actor(session, actor_id, organization_id)
    if user is None or not user.is_active:
        return False
    return user.role == ROLE_ADMIN


def require_privileged_actor(session, actor_id: int | None, organization_id: int | None = None) -> None:
    """Raise PermissionDenied unless the actor holds elevated privileges."""
    if not is_privileged_actor(session, actor_id, organization_id):
        current_app.logger.warning("Permission denied for actor_id=%s org_id=%s", actor_id, organization_id)
        raise PermissionDenied("You do not have permission to perform this action")
