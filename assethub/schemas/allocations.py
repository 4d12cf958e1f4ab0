import math
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..services.lifecycle import AssetStatus, AssetType, as_utc, derive_status, utcnow
from .common import UtcDatetime
from .users import UserSummary


class AllocationStatus(str, Enum):
    active = "active"
    returned = "returned"
    pending = "pending"


class AllocationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    asset_id: uuid.UUID
    user_id: uuid.UUID
    allocation_date: Optional[UtcDatetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class AllocationUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: Optional[AllocationStatus] = None
    return_date: Optional[UtcDatetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class AssetSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: AssetType
    category: str
    status: AssetStatus
    serial_number: Optional[str] = None
    purchase_date: Optional[UtcDatetime] = None
    expiry_date: Optional[UtcDatetime] = None
    assigned_to: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def _current_status(self):
        self.status = derive_status(self.purchase_date, self.expiry_date, self.assigned_to)
        return self


class AllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    asset_id: uuid.UUID
    asset: Optional[AssetSummary] = None
    user_id: uuid.UUID
    user: Optional[UserSummary] = None
    allocation_date: UtcDatetime
    return_date: Optional[UtcDatetime] = None
    status: AllocationStatus
    notes: Optional[str] = None
    created_by: uuid.UUID
    creator: Optional[UserSummary] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @computed_field
    @property
    def duration_days(self) -> int:
        end = self.return_date or utcnow()
        return math.ceil((as_utc(end) - self.allocation_date).total_seconds() / 86400)


class AllocationStats(BaseModel):
    total_allocations: int
    active_allocations: int
    returned_allocations: int
    pending_allocations: int
