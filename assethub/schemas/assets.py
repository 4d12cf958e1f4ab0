import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..services.lifecycle import (
    AssetStatus,
    AssetType,
    Classification,
    classify,
    days_until_expiry,
    derive_status,
    expiry_status,
)
from .common import UtcDatetime
from .users import UserSummary


# Asset Schemas
class AssetCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)
    type: AssetType
    category: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    purchase_date: Optional[UtcDatetime] = None
    expiry_date: Optional[UtcDatetime] = None
    assigned_to: Optional[uuid.UUID] = None
    serial_number: Optional[str] = Field(default=None, max_length=100)
    cost: Optional[float] = Field(default=None, ge=0)
    vendor: Optional[str] = Field(default=None, max_length=100)


class AssetUpdate(BaseModel):
    """Partial update. ``status`` is derived, and the assignee changes only through
    assign, unassign or allocations, so neither is accepted here."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    type: Optional[AssetType] = None
    category: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    purchase_date: Optional[UtcDatetime] = None
    expiry_date: Optional[UtcDatetime] = None
    serial_number: Optional[str] = Field(default=None, max_length=100)
    cost: Optional[float] = Field(default=None, ge=0)
    vendor: Optional[str] = Field(default=None, max_length=100)


class AssignRequest(BaseModel):
    user_id: uuid.UUID


class AssetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    type: AssetType
    category: str
    description: Optional[str] = None
    purchase_date: UtcDatetime
    expiry_date: Optional[UtcDatetime] = None
    status: AssetStatus
    assigned_to: Optional[uuid.UUID] = None
    assignee: Optional[UserSummary] = None
    serial_number: Optional[str] = None
    cost: Optional[float] = None
    vendor: Optional[str] = None
    created_by: uuid.UUID
    creator: Optional[UserSummary] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _current_status(self):
        # The stored status may predate the last expiry sweep
        self.status = derive_status(self.purchase_date, self.expiry_date, self.assigned_to)
        return self

    @computed_field
    @property
    def classification(self) -> Classification:
        return classify(self.purchase_date, self.expiry_date)

    @computed_field
    @property
    def days_until_expiry(self) -> Optional[int]:
        return days_until_expiry(self.expiry_date)

    @computed_field
    @property
    def expiry_status(self) -> str:
        return expiry_status(self.expiry_date)


class AssetStats(BaseModel):
    total_assets: int
    available_assets: int
    assigned_assets: int
    expired_assets: int
    expiring_assets: int
    by_type: dict


class SweepResult(BaseModel):
    matched_count: int
    modified_count: int
