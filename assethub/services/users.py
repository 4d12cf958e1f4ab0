"""
User accounts: CRUD with soft delete, statistics and password management.
"""
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, verify_password
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import User
from ..schemas.users import UserCreate, UserRole, UserUpdate
from .query import Page, PageParams, count_when, paginate, search_clause


logger = structlog.get_logger(__name__)

USER_SORT_FIELDS = {
    "name": User.name,
    "email": User.email,
    "role": User.role,
    "department": User.department,
    "is_active": User.is_active,
    "created_at": User.created_at,
    "updated_at": User.updated_at,
    "last_login_at": User.last_login_at,
}
USER_SEARCH_FIELDS = (User.name, User.email, User.department)


@dataclass
class UserFilters:
    role: Optional[UserRole] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


def list_users(db: Session, filters: UserFilters, params: PageParams) -> Page:
    query = db.query(User)
    if filters.role:
        query = query.filter(User.role == UserRole(filters.role).value)
    if filters.department:
        query = query.filter(User.department == filters.department)
    if filters.is_active is not None:
        query = query.filter(User.is_active == filters.is_active)
    if filters.search:
        query = query.filter(search_clause(USER_SEARCH_FIELDS, filters.search))
    return paginate(query, params, USER_SORT_FIELDS, default_sort="created_at")


def get_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.lower()).first()


def _ensure_email_free(db: Session, email: str, exclude_id: Optional[uuid.UUID] = None) -> None:
    query = db.query(User.id).filter(User.email == email.lower())
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("User with this email already exists")


def create_user(db: Session, data: UserCreate) -> User:
    _ensure_email_free(db, data.email)
    user = User(
        name=data.name,
        email=data.email.lower(),
        password_hash=get_password_hash(data.password),
        role=UserRole(data.role).value,
        department=data.department,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_created", user_id=str(user.id), role=user.role)
    return user


def update_user(db: Session, user_id: uuid.UUID, data: UserUpdate) -> User:
    user = get_user(db, user_id)
    changes = data.model_dump(exclude_unset=True)
    for key in ("name", "email", "role", "department", "is_active"):
        if key in changes and changes[key] is None:
            raise ValidationError(f"{key} cannot be null")
    if "email" in changes:
        _ensure_email_free(db, changes["email"], exclude_id=user.id)
        changes["email"] = changes["email"].lower()
    if "role" in changes:
        changes["role"] = UserRole(changes["role"]).value
    for key, value in changes.items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    logger.info("user_updated", user_id=str(user.id), fields=sorted(changes))
    return user


def delete_user(db: Session, user_id: uuid.UUID) -> None:
    """Soft delete: the account is deactivated, never removed."""
    user = get_user(db, user_id)
    user.is_active = False
    db.commit()
    logger.info("user_deactivated", user_id=str(user.id))


def toggle_user_status(db: Session, user_id: uuid.UUID) -> User:
    user = get_user(db, user_id)
    user.is_active = not user.is_active
    db.commit()
    db.refresh(user)
    logger.info("user_status_toggled", user_id=str(user.id), is_active=user.is_active)
    return user


def change_password(db: Session, user_id: uuid.UUID, current_password: str, new_password: str) -> None:
    user = get_user(db, user_id)
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")
    user.password_hash = get_password_hash(new_password)
    db.commit()
    logger.info("user_password_changed", user_id=str(user.id))


def reset_password(db: Session, user_id: uuid.UUID, new_password: str) -> None:
    user = get_user(db, user_id)
    user.password_hash = get_password_hash(new_password)
    db.commit()
    logger.info("user_password_reset", user_id=str(user.id))


def users_by_role(db: Session, role: UserRole) -> List[User]:
    return (
        db.query(User)
        .filter(User.role == UserRole(role).value, User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )


def users_by_department(db: Session, department: str) -> List[User]:
    return (
        db.query(User)
        .filter(User.department == department, User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )


def user_stats(db: Session) -> Dict[str, Any]:
    totals = db.query(
        func.count(User.id),
        count_when(User.is_active.is_(True)),
        count_when(User.is_active.is_(False)),
        count_when(User.role == UserRole.admin.value),
        count_when(User.role == UserRole.hr.value),
        count_when(User.role == UserRole.employee.value),
    ).one()

    departments = (
        db.query(
            User.department,
            func.count(User.id).label("count"),
            count_when(User.is_active.is_(True)).label("active_count"),
        )
        .group_by(User.department)
        .order_by(func.count(User.id).desc(), User.department.asc())
        .all()
    )

    return {
        "total_users": int(totals[0]),
        "active_users": int(totals[1]),
        "inactive_users": int(totals[2]),
        "admin_users": int(totals[3]),
        "hr_users": int(totals[4]),
        "employee_users": int(totals[5]),
        "department_stats": [
            {"department": d, "count": int(c), "active_count": int(a)} for d, c, a in departments
        ],
    }
