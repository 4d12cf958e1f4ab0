import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin_or_hr
from ..db import get_db
from ..models.models import Allocation, User
from ..schemas.allocations import (
    AllocationCreate,
    AllocationOut,
    AllocationStats,
    AllocationStatus,
    AllocationUpdate,
)
from ..schemas.common import success_response
from ..services import allocations as allocation_service
from ..services.query import MAX_LIMIT, PageParams
from .params import page_params


router = APIRouter(prefix="/allocations", tags=["allocations"])


def _out(allocation: Allocation) -> dict:
    return AllocationOut.model_validate(allocation).model_dump(mode="json")


def _out_list(items: List[Allocation]) -> list:
    return [_out(a) for a in items]


@router.get("")
def list_allocations(
    status: Optional[AllocationStatus] = Query(None),
    asset_id: Optional[uuid.UUID] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = allocation_service.AllocationFilters(status=status, asset_id=asset_id, user_id=user_id)
    page = allocation_service.list_allocations(db, filters, params)
    return success_response("Allocations retrieved successfully", _out_list(page.items), page)


@router.get("/stats")
def allocation_stats(db: Session = Depends(get_db), _=Depends(get_current_user)):
    stats = AllocationStats(**allocation_service.allocation_stats(db))
    return success_response("Allocation statistics retrieved successfully", stats.model_dump())


@router.get("/user/{user_id}/active")
def user_active_allocations(user_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    items = allocation_service.active_for_user(db, user_id)
    return success_response("User active allocations retrieved successfully", _out_list(items))


@router.get("/asset/{asset_id}/active")
def asset_active_allocation(asset_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    allocation = allocation_service.active_for_asset(db, asset_id)
    return success_response("Asset active allocation retrieved successfully", _out(allocation))


@router.get("/user/{user_id}/history")
def user_allocation_history(
    user_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    result = allocation_service.history_for_user(db, user_id, page, limit)
    return success_response("User allocation history retrieved successfully", _out_list(result.items), result)


@router.get("/asset/{asset_id}/history")
def asset_allocation_history(
    asset_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    result = allocation_service.history_for_asset(db, asset_id, page, limit)
    return success_response("Asset allocation history retrieved successfully", _out_list(result.items), result)


@router.get("/{allocation_id}")
def get_allocation(allocation_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    allocation = allocation_service.get_allocation(db, allocation_id)
    return success_response("Allocation retrieved successfully", _out(allocation))


@router.post("", status_code=201)
def create_allocation(req: AllocationCreate, db: Session = Depends(get_db), user: User = Depends(require_admin_or_hr)):
    allocation = allocation_service.create_allocation(db, req, created_by=user.id)
    return success_response("Allocation created successfully", _out(allocation))


@router.put("/{allocation_id}")
def update_allocation(
    allocation_id: uuid.UUID,
    req: AllocationUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_admin_or_hr),
):
    allocation = allocation_service.update_allocation(db, allocation_id, req)
    return success_response("Allocation updated successfully", _out(allocation))


@router.delete("/{allocation_id}")
def delete_allocation(allocation_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    allocation_service.delete_allocation(db, allocation_id)
    return success_response("Allocation deleted successfully")


@router.post("/{allocation_id}/return")
def return_allocation(allocation_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    allocation = allocation_service.return_allocation(db, allocation_id)
    return success_response("Asset returned successfully", _out(allocation))
