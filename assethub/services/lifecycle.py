"""
Asset lifecycle rules.

Status is never set directly: it is a pure function of the purchase date, the
expiry date, the assignee and the current time. The functions here hold no
database state; ``services.assets`` and ``services.allocations`` call
``refresh_status`` on every write that touches one of the inputs.
"""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ..errors import ValidationError


class AssetStatus(str, Enum):
    available = "available"
    assigned = "assigned"
    expired = "expired"


class AssetType(str, Enum):
    hardware = "hardware"
    software = "software"
    domain = "domain"
    hosting = "hosting"
    license = "license"
    equipment = "equipment"
    vehicle = "vehicle"


class Classification(str, Enum):
    upcoming = "Upcoming"
    ongoing = "Ongoing"
    expired = "Expired"


EXPIRING_SOON_DAYS = 30
EXPIRING_LATER_DAYS = 90


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expiry_date is None:
        return False
    return as_utc(expiry_date) < as_utc(now or utcnow())


def derive_status(
    purchase_date: Optional[datetime],
    expiry_date: Optional[datetime],
    assigned_to: Any,
    now: Optional[datetime] = None,
) -> AssetStatus:
    # Expiry wins over assignment
    if is_expired(expiry_date, now):
        return AssetStatus.expired
    if assigned_to:
        return AssetStatus.assigned
    return AssetStatus.available


def validate_date_order(purchase_date: Optional[datetime], expiry_date: Optional[datetime]) -> None:
    if purchase_date is None or expiry_date is None:
        return
    if as_utc(expiry_date) <= as_utc(purchase_date):
        raise ValidationError(
            "Expiry date must be after purchase date",
            errors=[{"field": "expiry_date", "message": "Expiry date must be after purchase date"}],
        )


def classify(
    purchase_date: Optional[datetime],
    expiry_date: Optional[datetime],
    now: Optional[datetime] = None,
) -> Classification:
    now = as_utc(now or utcnow())
    if is_expired(expiry_date, now):
        return Classification.expired
    if purchase_date is not None and as_utc(purchase_date) > now:
        return Classification.upcoming
    return Classification.ongoing


def days_until_expiry(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if expiry_date is None:
        return None
    delta = as_utc(expiry_date) - as_utc(now or utcnow())
    return math.ceil(delta.total_seconds() / 86400)


def expiry_status(expiry_date: Optional[datetime], now: Optional[datetime] = None) -> str:
    days = days_until_expiry(expiry_date, now)
    if days is None:
        return "no-expiry"
    if days < 0:
        return "expired"
    if days <= EXPIRING_SOON_DAYS:
        return "expiring-soon"
    if days <= EXPIRING_LATER_DAYS:
        return "expiring-later"
    return "valid"


def refresh_status(asset, now: Optional[datetime] = None) -> AssetStatus:
    """Recompute and store the derived status on an ORM asset."""
    status = derive_status(asset.purchase_date, asset.expiry_date, asset.assigned_to, now)
    asset.status = status.value
    return status
