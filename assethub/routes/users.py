import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import (
    get_current_user,
    require_admin,
    require_admin_or_hr,
    require_self_or_roles,
)
from ..db import get_db
from ..errors import AuthorizationError
from ..models.models import User
from ..schemas.common import success_response
from ..schemas.users import (
    ChangePasswordRequest,
    ResetPasswordRequest,
    UserCreate,
    UserOut,
    UserRole,
    UserUpdate,
)
from ..services import users as user_service
from ..services.query import PageParams
from .params import page_params


router = APIRouter(prefix="/users", tags=["users"])

PRIVILEGED_ROLES = (UserRole.admin.value, UserRole.hr.value)


def _out(user: User) -> dict:
    return UserOut.model_validate(user).model_dump(mode="json")


@router.get("")
def list_users(
    role: Optional[UserRole] = Query(None),
    department: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = user_service.UserFilters(role=role, department=department, is_active=is_active, search=search)
    page = user_service.list_users(db, filters, params)
    return success_response("Users retrieved successfully", [_out(u) for u in page.items], page)


@router.get("/stats")
def user_stats(db: Session = Depends(get_db), _=Depends(get_current_user)):
    return success_response("User statistics retrieved successfully", user_service.user_stats(db))


@router.get("/role/{role}")
def users_by_role(role: UserRole, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    items = user_service.users_by_role(db, role)
    return success_response("Users by role retrieved successfully", [_out(u) for u in items])


@router.get("/department/{department}")
def users_by_department(department: str, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    items = user_service.users_by_department(db, department)
    return success_response("Users by department retrieved successfully", [_out(u) for u in items])


@router.post("", status_code=201)
def create_user(req: UserCreate, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    return success_response("User created successfully", _out(user_service.create_user(db, req)))


@router.get("/{user_id}")
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_self_or_roles(*PRIVILEGED_ROLES)),
):
    return success_response("User retrieved successfully", _out(user_service.get_user(db, user_id)))


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    req: UserUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(require_self_or_roles(*PRIVILEGED_ROLES)),
):
    # Role and activation changes need admin or hr, even on one's own record
    if current.role not in PRIVILEGED_ROLES and req.model_fields_set & {"role", "is_active"}:
        raise AuthorizationError("Insufficient permissions")
    return success_response("User updated successfully", _out(user_service.update_user(db, user_id, req)))


@router.delete("/{user_id}")
def delete_user(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    user_service.delete_user(db, user_id)
    return success_response("User deleted successfully")


@router.put("/{user_id}/reset-password")
def reset_password(
    user_id: uuid.UUID,
    req: ResetPasswordRequest,
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    user_service.reset_password(db, user_id, req.new_password)
    return success_response("Password reset successfully")


@router.put("/{user_id}/toggle-status")
def toggle_status(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    user = user_service.toggle_user_status(db, user_id)
    state = "activated" if user.is_active else "deactivated"
    return success_response(f"User {state} successfully", _out(user))


@router.put("/{user_id}/change-password")
def change_password(
    user_id: uuid.UUID,
    req: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_user),
):
    if current.id != user_id and current.role != UserRole.admin.value:
        raise AuthorizationError("You can only change your own password")
    user_service.change_password(db, user_id, req.current_password, req.new_password)
    return success_response("Password changed successfully")
