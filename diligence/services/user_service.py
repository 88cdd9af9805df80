"""
User Service — the deal-team directory used for task assignment.

Authentication is handled outside this service.
"""

import logging

from sqlalchemy import select

from diligence.core.exceptions import ConflictError, NotFoundError, ValidationError
from diligence.models import db
from diligence.models.user import USER_ROLES, User
from diligence.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)


def create_user(username: str, name: str, role: str = "functional_lead",
                specialization: str | None = None) -> User:
    """Create a deal team member."""
    username = (username or "").strip()
    name = (name or "").strip()
    errors = {}
    if not username:
        errors["username"] = "required"
    if not name:
        errors["name"] = "required"
    if role not in USER_ROLES:
        errors["role"] = f"Must be one of: {', '.join(USER_ROLES)}"
    if errors:
        raise ValidationError("Invalid user.", details=errors)

    existing = db.session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()
    if existing:
        raise ConflictError(resource="User", field="username", value=username)

    user = User(username=username, name=name, role=role, specialization=specialization or None)
    db.session.add(user)
    commit_or_raise("create user")
    logger.info("User created id=%s username=%s", user.id, user.username)
    return user


def get_user_by_id(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def get_user(user_id: int) -> User:
    user = get_user_by_id(user_id)
    if not user:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def list_users() -> list[User]:
    return list(db.session.execute(select(User).order_by(User.name, User.id)).scalars().all())
