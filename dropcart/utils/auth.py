from __future__ import annotations

from flask import g, request

from dropcart.extensions import db
from dropcart.models import User
from dropcart.services.access_policy import Actor
from dropcart.utils.errors import UnauthorizedError
from dropcart.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    try:
        uid = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, uid)
    if user is not None:
        g.auth_user_id = user.id
        g.auth_role = user.role
        g.auth_tenant_id = user.tenant_id
    return user


def require_user() -> User:
    user = current_user()
    if user is None:
        raise UnauthorizedError("Authentication required")
    return user


def require_actor() -> Actor:
    return Actor.from_user(require_user())
