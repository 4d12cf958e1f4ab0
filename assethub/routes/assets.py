import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin, require_admin_or_hr
from ..db import get_db
from ..models.models import Asset, User
from ..schemas.assets import AssetCreate, AssetOut, AssetStats, AssetUpdate, AssignRequest, SweepResult
from ..schemas.common import success_response
from ..services import assets as asset_service
from ..services.lifecycle import AssetStatus, AssetType, Classification
from ..services.query import PageParams
from .params import page_params


router = APIRouter(prefix="/assets", tags=["assets"])


def _out(asset: Asset) -> dict:
    return AssetOut.model_validate(asset).model_dump(mode="json")


def _out_list(items: List[Asset]) -> list:
    return [_out(a) for a in items]


@router.get("")
def list_assets(
    type: Optional[AssetType] = Query(None),
    status: Optional[AssetStatus] = Query(None),
    classification: Optional[Classification] = Query(None),
    category: Optional[str] = Query(None),
    assigned_to: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    """List assets with filters, search and pagination"""
    filters = asset_service.AssetFilters(
        type=type,
        status=status,
        classification=classification,
        category=category,
        assigned_to=assigned_to,
        search=search,
    )
    page = asset_service.list_assets(db, filters, params)
    return success_response("Assets retrieved successfully", _out_list(page.items), page)


@router.get("/stats")
def asset_stats(db: Session = Depends(get_db), _=Depends(get_current_user)):
    stats = AssetStats(**asset_service.asset_stats(db))
    return success_response("Asset statistics retrieved successfully", stats.model_dump())


@router.get("/expiring")
def expiring_assets(
    days: int = Query(30, ge=0, le=3650),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    items = asset_service.find_expiring(db, days)
    return success_response("Expiring assets retrieved successfully", _out_list(items))


@router.get("/expired")
def expired_assets(db: Session = Depends(get_db), _=Depends(get_current_user)):
    items = asset_service.find_expired(db)
    return success_response("Expired assets retrieved successfully", _out_list(items))


@router.get("/available")
def available_assets(db: Session = Depends(get_db), _=Depends(get_current_user)):
    items = asset_service.available_assets(db)
    return success_response("Available assets retrieved successfully", _out_list(items))


@router.get("/type/{asset_type}")
def assets_by_type(asset_type: AssetType, db: Session = Depends(get_db), _=Depends(get_current_user)):
    items = asset_service.assets_by_type(db, asset_type)
    return success_response("Assets by type retrieved successfully", _out_list(items))


@router.post("/update-expired")
def update_expired(db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    result = SweepResult(**asset_service.sweep_expired(db))
    return success_response("Expired assets updated successfully", result.model_dump())


@router.get("/{asset_id}")
def get_asset(asset_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return success_response("Asset retrieved successfully", _out(asset_service.get_asset(db, asset_id)))


@router.post("", status_code=201)
def create_asset(req: AssetCreate, db: Session = Depends(get_db), user: User = Depends(require_admin_or_hr)):
    asset = asset_service.create_asset(db, req, created_by=user.id)
    return success_response("Asset created successfully", _out(asset))


@router.put("/{asset_id}")
def update_asset(asset_id: uuid.UUID, req: AssetUpdate, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    asset = asset_service.update_asset(db, asset_id, req)
    return success_response("Asset updated successfully", _out(asset))


@router.delete("/{asset_id}")
def delete_asset(asset_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin)):
    asset_service.delete_asset(db, asset_id)
    return success_response("Asset deleted successfully")


@router.post("/{asset_id}/assign")
def assign_asset(asset_id: uuid.UUID, req: AssignRequest, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    asset = asset_service.assign_asset(db, asset_id, req.user_id)
    return success_response("Asset assigned successfully", _out(asset))


@router.post("/{asset_id}/unassign")
def unassign_asset(asset_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(require_admin_or_hr)):
    asset = asset_service.unassign_asset(db, asset_id)
    return success_response("Asset unassigned successfully", _out(asset))
