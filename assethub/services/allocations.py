"""
Allocation consistency.

An allocation and the asset it holds change together: every operation here
writes both rows in one transaction, so a failure leaves neither changed.
At most one ``active`` allocation exists per asset; the application checks
first and the partial unique index ``uq_allocation_active_asset`` backs the
check up when two requests race.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Allocation, Asset, User
from ..schemas.allocations import AllocationCreate, AllocationStatus, AllocationUpdate
from . import lifecycle, notifications
from .lifecycle import AssetStatus
from .query import Page, PageParams, count_when, paginate


logger = structlog.get_logger(__name__)

ALLOCATION_SORT_FIELDS = {
    "allocation_date": Allocation.allocation_date,
    "return_date": Allocation.return_date,
    "status": Allocation.status,
    "created_at": Allocation.created_at,
    "updated_at": Allocation.updated_at,
}

ACTIVE = AllocationStatus.active.value
RETURNED = AllocationStatus.returned.value


@dataclass
class AllocationFilters:
    status: Optional[AllocationStatus] = None
    asset_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None


def _with_refs(query):
    return query.options(
        selectinload(Allocation.asset),
        selectinload(Allocation.user),
        selectinload(Allocation.creator),
    )


def list_allocations(db: Session, filters: AllocationFilters, params: PageParams) -> Page:
    query = _with_refs(db.query(Allocation))
    if filters.status:
        query = query.filter(Allocation.status == AllocationStatus(filters.status).value)
    if filters.asset_id:
        query = query.filter(Allocation.asset_id == filters.asset_id)
    if filters.user_id:
        query = query.filter(Allocation.user_id == filters.user_id)
    return paginate(query, params, ALLOCATION_SORT_FIELDS, default_sort="allocation_date")


def get_allocation(db: Session, allocation_id: uuid.UUID) -> Allocation:
    allocation = db.get(Allocation, allocation_id)
    if allocation is None:
        raise NotFoundError("Allocation not found")
    return allocation


def _active_for_asset_query(db: Session, asset_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None):
    query = db.query(Allocation).filter(Allocation.asset_id == asset_id, Allocation.status == ACTIVE)
    if exclude_id is not None:
        query = query.filter(Allocation.id != exclude_id)
    return query


def _acquire_asset(db: Session, asset: Asset, user_id: uuid.UUID, now: datetime, exclude_id: Optional[uuid.UUID] = None) -> None:
    if lifecycle.refresh_status(asset, now) != AssetStatus.available:
        raise ConflictError("Asset is not available for allocation")
    if _active_for_asset_query(db, asset.id, exclude_id).first() is not None:
        raise ConflictError("Asset already has an active allocation")
    asset.assigned_to = user_id
    lifecycle.refresh_status(asset, now)


def _release_asset(allocation: Allocation, now: datetime) -> None:
    asset = allocation.asset
    if asset is None:
        return
    # Leave the asset alone if someone else has since been assigned to it
    if asset.assigned_to == allocation.user_id:
        asset.assigned_to = None
    lifecycle.refresh_status(asset, now)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Asset already has an active allocation")


def _check_return_date(allocation: Allocation, return_date: Optional[datetime]) -> None:
    if return_date is None:
        return
    if lifecycle.as_utc(return_date) < lifecycle.as_utc(allocation.allocation_date):
        raise ValidationError(
            "Return date cannot be before allocation date",
            errors=[{"field": "return_date", "message": "Return date cannot be before allocation date"}],
        )


def create_allocation(db: Session, data: AllocationCreate, created_by: uuid.UUID, now: Optional[datetime] = None) -> Allocation:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    allocation_date = lifecycle.as_utc(data.allocation_date) if data.allocation_date else now
    if allocation_date > now:
        raise ValidationError("Allocation date cannot be in the future")

    asset = db.get(Asset, data.asset_id)
    if asset is None:
        raise NotFoundError("Asset not found")
    user = db.get(User, data.user_id)
    if user is None:
        raise NotFoundError("User not found")
    if not user.is_active:
        raise ConflictError("User account is deactivated")

    try:
        _acquire_asset(db, asset, user.id, now)
    except ConflictError:
        db.rollback()
        raise
    allocation = Allocation(
        asset_id=asset.id,
        user_id=user.id,
        allocation_date=allocation_date,
        status=ACTIVE,
        notes=data.notes,
        created_by=created_by,
    )
    db.add(allocation)
    _commit(db)
    db.refresh(allocation)
    logger.info("allocation_created", allocation_id=str(allocation.id), asset_id=str(asset.id), user_id=str(user.id))

    notifications.send_assignment_notification(db, allocation)
    return allocation


def update_allocation(db: Session, allocation_id: uuid.UUID, data: AllocationUpdate, now: Optional[datetime] = None) -> Allocation:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    allocation = get_allocation(db, allocation_id)
    changes = data.model_dump(exclude_unset=True)

    if "status" in changes and changes["status"] is None:
        raise ValidationError("status cannot be null")
    new_status = AllocationStatus(changes.get("status", allocation.status)).value
    if new_status == AllocationStatus.pending.value and allocation.status != new_status:
        raise ValidationError("Allocations cannot be moved to pending")

    if "notes" in changes:
        allocation.notes = changes["notes"]

    try:
        if new_status == ACTIVE:
            if allocation.status != ACTIVE:
                _acquire_asset(db, allocation.asset, allocation.user_id, now, exclude_id=allocation.id)
            allocation.return_date = None
        elif new_status == RETURNED:
            return_date = changes.get("return_date") or allocation.return_date or now
            _check_return_date(allocation, return_date)
            if allocation.status == ACTIVE:
                _release_asset(allocation, now)
            allocation.return_date = return_date
        elif "return_date" in changes:
            _check_return_date(allocation, changes["return_date"])
            allocation.return_date = changes["return_date"]
    except (ConflictError, ValidationError):
        db.rollback()
        raise

    previous = allocation.status
    allocation.status = new_status
    _commit(db)
    db.refresh(allocation)
    logger.info("allocation_updated", allocation_id=str(allocation.id), from_status=previous, to_status=new_status)

    if previous == ACTIVE and new_status == RETURNED:
        notifications.send_return_notification(db, allocation)
    return allocation


def return_allocation(db: Session, allocation_id: uuid.UUID, now: Optional[datetime] = None) -> Allocation:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    allocation = get_allocation(db, allocation_id)
    if allocation.status != ACTIVE:
        raise ConflictError("Allocation is not active")

    allocation.status = RETURNED
    allocation.return_date = max(now, lifecycle.as_utc(allocation.allocation_date))
    _release_asset(allocation, now)
    db.commit()
    db.refresh(allocation)
    logger.info("allocation_returned", allocation_id=str(allocation.id), asset_id=str(allocation.asset_id))

    notifications.send_return_notification(db, allocation)
    return allocation


def delete_allocation(db: Session, allocation_id: uuid.UUID, now: Optional[datetime] = None) -> None:
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    allocation = get_allocation(db, allocation_id)
    was_active = allocation.status == ACTIVE
    if was_active:
        _release_asset(allocation, now)
    db.delete(allocation)
    db.commit()
    logger.info("allocation_deleted", allocation_id=str(allocation_id), implicit_return=was_active)


def allocation_stats(db: Session) -> Dict[str, Any]:
    row = db.query(
        func.count(Allocation.id),
        count_when(Allocation.status == ACTIVE),
        count_when(Allocation.status == RETURNED),
        count_when(Allocation.status == AllocationStatus.pending.value),
    ).one()
    return {
        "total_allocations": int(row[0]),
        "active_allocations": int(row[1]),
        "returned_allocations": int(row[2]),
        "pending_allocations": int(row[3]),
    }


def active_for_user(db: Session, user_id: uuid.UUID) -> List[Allocation]:
    return (
        _with_refs(db.query(Allocation))
        .filter(Allocation.user_id == user_id, Allocation.status == ACTIVE)
        .order_by(Allocation.allocation_date.desc())
        .all()
    )


def active_for_asset(db: Session, asset_id: uuid.UUID) -> Allocation:
    allocation = _with_refs(_active_for_asset_query(db, asset_id)).first()
    if allocation is None:
        raise NotFoundError("No active allocation found for this asset")
    return allocation


def _history(db: Session, column, value: uuid.UUID, page: int, limit: int) -> Page:
    params = PageParams(page=page, limit=limit, sort_by="allocation_date", sort_order="desc")
    query = _with_refs(db.query(Allocation)).filter(column == value)
    return paginate(query, params, ALLOCATION_SORT_FIELDS, default_sort="allocation_date")


def history_for_user(db: Session, user_id: uuid.UUID, page: int = 1, limit: int = 10) -> Page:
    return _history(db, Allocation.user_id, user_id, page, limit)


def history_for_asset(db: Session, asset_id: uuid.UUID, page: int = 1, limit: int = 10) -> Page:
    return _history(db, Allocation.asset_id, asset_id, page, limit)
