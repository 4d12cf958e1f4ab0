"""
Asset store operations.

Every write goes through ``lifecycle.refresh_status`` so the stored status
matches the lifecycle rules at write time; listings, filters and statistics
evaluate status and classification against the current time so they agree
with ``derive_status`` even before the next expiry sweep.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, func, not_, update
from sqlalchemy.orm import Session, selectinload

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Allocation, Asset, User
from ..schemas.assets import AssetCreate, AssetUpdate
from . import lifecycle
from .lifecycle import AssetStatus, AssetType, Classification
from .query import Page, PageParams, count_when, paginate, search_clause


logger = structlog.get_logger(__name__)

ASSET_SORT_FIELDS = {
    "name": Asset.name,
    "type": Asset.type,
    "category": Asset.category,
    "status": Asset.status,
    "purchase_date": Asset.purchase_date,
    "expiry_date": Asset.expiry_date,
    "serial_number": Asset.serial_number,
    "cost": Asset.cost,
    "vendor": Asset.vendor,
    "created_at": Asset.created_at,
    "updated_at": Asset.updated_at,
}
ASSET_SEARCH_FIELDS = (Asset.name, Asset.description, Asset.serial_number, Asset.vendor)

# Columns whose change requires a status recompute
_STATUS_INPUTS = ("purchase_date", "expiry_date")


@dataclass
class AssetFilters:
    type: Optional[AssetType] = None
    status: Optional[AssetStatus] = None
    classification: Optional[Classification] = None
    category: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None
    search: Optional[str] = None


def _expired_clause(now: datetime):
    return and_(Asset.expiry_date.isnot(None), Asset.expiry_date < now)


def status_clause(status: AssetStatus, now: datetime):
    """SQL counterpart of ``lifecycle.derive_status``."""
    expired = _expired_clause(now)
    if status == AssetStatus.expired:
        return expired
    if status == AssetStatus.assigned:
        return and_(not_(expired), Asset.assigned_to.isnot(None))
    return and_(not_(expired), Asset.assigned_to.is_(None))


def classification_clause(classification: Classification, now: datetime):
    """SQL counterpart of ``lifecycle.classify``."""
    expired = _expired_clause(now)
    upcoming = and_(not_(expired), Asset.purchase_date > now)
    if classification == Classification.expired:
        return expired
    if classification == Classification.upcoming:
        return upcoming
    return and_(not_(expired), not_(upcoming))


def _with_people(query):
    return query.options(selectinload(Asset.assignee), selectinload(Asset.creator))


def list_assets(db: Session, filters: AssetFilters, params: PageParams, now: Optional[datetime] = None) -> Page:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    query = _with_people(db.query(Asset))
    if filters.type:
        query = query.filter(Asset.type == AssetType(filters.type).value)
    if filters.status:
        query = query.filter(status_clause(AssetStatus(filters.status), now))
    if filters.classification:
        query = query.filter(classification_clause(Classification(filters.classification), now))
    if filters.category:
        query = query.filter(Asset.category == filters.category)
    if filters.assigned_to:
        query = query.filter(Asset.assigned_to == filters.assigned_to)
    if filters.search:
        query = query.filter(search_clause(ASSET_SEARCH_FIELDS, filters.search))
    return paginate(query, params, ASSET_SORT_FIELDS, default_sort="created_at")


def get_asset(db: Session, asset_id: uuid.UUID) -> Asset:
    asset = db.get(Asset, asset_id)
    if asset is None:
        raise NotFoundError("Asset not found")
    return asset


def _ensure_serial_free(db: Session, serial_number: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> None:
    if not serial_number:
        return
    query = db.query(Asset.id).filter(Asset.serial_number == serial_number)
    if exclude_id is not None:
        query = query.filter(Asset.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Asset with this serial number already exists")


def _ensure_assignable_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise ConflictError("User account is deactivated")
    return user


def create_asset(db: Session, data: AssetCreate, created_by: uuid.UUID, now: Optional[datetime] = None) -> Asset:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    fields = data.model_dump()
    fields["type"] = AssetType(fields["type"]).value
    fields["serial_number"] = fields.get("serial_number") or None
    if fields.get("purchase_date") is None:
        fields["purchase_date"] = now

    lifecycle.validate_date_order(fields["purchase_date"], fields.get("expiry_date"))
    _ensure_serial_free(db, fields["serial_number"])
    if fields.get("assigned_to"):
        _ensure_assignable_user(db, fields["assigned_to"])

    asset = Asset(**fields, created_by=created_by)
    lifecycle.refresh_status(asset, now)
    db.add(asset)
    db.commit()
    db.refresh(asset)
    logger.info("asset_created", asset_id=str(asset.id), status=asset.status)
    return asset


def update_asset(db: Session, asset_id: uuid.UUID, data: AssetUpdate, now: Optional[datetime] = None) -> Asset:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    asset = get_asset(db, asset_id)
    changes = data.model_dump(exclude_unset=True)

    for key in ("name", "type", "category", "purchase_date"):
        if key in changes and changes[key] is None:
            raise ValidationError(f"{key} cannot be null")
    if "type" in changes:
        changes["type"] = AssetType(changes["type"]).value
    if "serial_number" in changes:
        changes["serial_number"] = changes["serial_number"] or None
        _ensure_serial_free(db, changes["serial_number"], exclude_id=asset.id)

    # Validate against the stored counterpart when only one side of the pair changes
    if "purchase_date" in changes or "expiry_date" in changes:
        lifecycle.validate_date_order(
            changes.get("purchase_date", asset.purchase_date),
            changes.get("expiry_date", asset.expiry_date),
        )

    for key, value in changes.items():
        setattr(asset, key, value)
    if any(key in changes for key in _STATUS_INPUTS):
        lifecycle.refresh_status(asset, now)
    db.commit()
    db.refresh(asset)
    logger.info("asset_updated", asset_id=str(asset.id), fields=sorted(changes), status=asset.status)
    return asset


def delete_asset(db: Session, asset_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    asset = get_asset(db, asset_id)
    if lifecycle.derive_status(asset.purchase_date, asset.expiry_date, asset.assigned_to, now) == AssetStatus.assigned:
        raise ConflictError("Cannot delete assigned asset. Please return it first.")
    db.delete(asset)
    db.commit()
    logger.info("asset_deleted", asset_id=str(asset_id))


def asset_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    totals = db.query(
        func.count(Asset.id),
        count_when(status_clause(AssetStatus.available, now)),
        count_when(status_clause(AssetStatus.assigned, now)),
        count_when(status_clause(AssetStatus.expired, now)),
    ).one()
    by_type = dict(db.query(Asset.type, func.count(Asset.id)).group_by(Asset.type).all())
    return {
        "total_assets": int(totals[0]),
        "available_assets": int(totals[1]),
        "assigned_assets": int(totals[2]),
        "expired_assets": int(totals[3]),
        "expiring_assets": len(find_expiring(db, lifecycle.EXPIRING_SOON_DAYS, now)),
        "by_type": {t: int(c) for t, c in by_type.items()},
    }


def find_expiring(db: Session, days: int = 30, now: Optional[datetime] = None) -> List[Asset]:
    """Assets expiring within ``days``, whatever their status (assigned ones included)."""
    if days < 0:
        raise ValidationError("Days must be zero or positive")
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    until = now + timedelta(days=days)
    return (
        _with_people(db.query(Asset))
        .filter(Asset.expiry_date >= now, Asset.expiry_date <= until)
        .order_by(Asset.expiry_date.asc())
        .all()
    )


def find_expired(db: Session, now: Optional[datetime] = None) -> List[Asset]:
    """Assets past expiry whose stored status has not been swept yet."""
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    return (
        _with_people(db.query(Asset))
        .filter(_expired_clause(now), Asset.status != AssetStatus.expired.value)
        .order_by(Asset.expiry_date.asc())
        .all()
    )


def sweep_expired(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    result = db.execute(
        update(Asset)
        .where(_expired_clause(now), Asset.status != AssetStatus.expired.value)
        .values(status=AssetStatus.expired.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = int(result.rowcount or 0)
    logger.info("expired_assets_swept", matched_count=count)
    return {"matched_count": count, "modified_count": count}


def assets_by_type(db: Session, asset_type: AssetType) -> List[Asset]:
    return (
        _with_people(db.query(Asset))
        .filter(Asset.type == AssetType(asset_type).value)
        .order_by(Asset.name.asc())
        .all()
    )


def available_assets(db: Session, now: Optional[datetime] = None) -> List[Asset]:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    return (
        _with_people(db.query(Asset))
        .filter(status_clause(AssetStatus.available, now))
        .order_by(Asset.name.asc())
        .all()
    )


def assign_asset(db: Session, asset_id: uuid.UUID, user_id: uuid.UUID, now: Optional[datetime] = None) -> Asset:
    asset = get_asset(db, asset_id)
    if lifecycle.refresh_status(asset, now) != AssetStatus.available:
        db.rollback()
        raise ConflictError("Asset is not available for assignment")
    _ensure_assignable_user(db, user_id)
    asset.assigned_to = user_id
    lifecycle.refresh_status(asset, now)
    db.commit()
    db.refresh(asset)
    logger.info("asset_assigned", asset_id=str(asset.id), user_id=str(user_id))
    return asset


def unassign_asset(db: Session, asset_id: uuid.UUID, now: Optional[datetime] = None) -> Asset:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    asset = get_asset(db, asset_id)
    if lifecycle.refresh_status(asset, now) != AssetStatus.assigned:
        db.rollback()
        raise ConflictError("Asset is not currently assigned")

    # Close the allocation that holds the asset, if any
    active = (
        db.query(Allocation)
        .filter(Allocation.asset_id == asset.id, Allocation.status == "active")
        .first()
    )
    if active is not None:
        active.status = "returned"
        active.return_date = max(now, lifecycle.as_utc(active.allocation_date))

    asset.assigned_to = None
    lifecycle.refresh_status(asset, now)
    db.commit()
    db.refresh(asset)
    logger.info(
        "asset_unassigned",
        asset_id=str(asset.id),
        closed_allocation_id=str(active.id) if active is not None else None,
    )
    return asset
