from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..errors import AuthenticationError, AuthorizationError
from ..models.models import User
from ..schemas.auth import LoginRequest, RefreshRequest, RegisterRequest, TokenResponse
from ..schemas.common import success_response
from ..schemas.users import ProfileUpdate, UserCreate, UserOut, UserRole, UserUpdate
from ..services import lifecycle
from ..services import users as user_service
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    user_id_from_payload,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _tokens(user: User) -> dict:
    return TokenResponse(
        user=UserOut.model_validate(user),
        token=create_access_token(user),
        refresh_token=create_refresh_token(user),
    ).model_dump(mode="json")


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = user_service.get_user_by_email(db, req.email)
    if not user or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthorizationError("Account is deactivated")
    user.last_login_at = lifecycle.utcnow()
    db.commit()
    db.refresh(user)
    logger.info("login_succeeded", user_id=str(user.id))
    return success_response("Login successful", _tokens(user))


@router.post("/register", status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    # Self-registration never grants elevated roles
    user = user_service.create_user(
        db,
        UserCreate(
            name=req.name,
            email=req.email,
            password=req.password,
            department=req.department,
            role=UserRole.employee,
        ),
    )
    return success_response("User registered successfully", _tokens(user))


@router.post("/refresh")
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    try:
        payload = decode_token(req.refresh_token, expected_type="refresh")
    except AuthenticationError:
        raise AuthenticationError("Invalid refresh token")
    user = db.get(User, user_id_from_payload(payload))
    if user is None:
        raise AuthenticationError("Invalid refresh token")
    if not user.is_active:
        raise AuthorizationError("Account is deactivated")
    return success_response("Token refreshed successfully", _tokens(user))


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return success_response("Profile retrieved successfully", UserOut.model_validate(user).model_dump(mode="json"))


@router.put("/profile")
def update_profile(req: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    # Only name and department are self-editable
    changes = UserUpdate(**req.model_dump(exclude_unset=True))
    updated = user_service.update_user(db, user.id, changes)
    return success_response("Profile updated successfully", UserOut.model_validate(updated).model_dump(mode="json"))
