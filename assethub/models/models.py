import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Float,
    JSON,
    Text,
    Index,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="employee", index=True)  # admin|hr|employee
    department: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)


class Asset(Base):
    """Trackable resource: hardware, licenses, domains, vehicles, ..."""
    __tablename__ = "assets"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # hardware|software|domain|hosting|license|equipment|vehicle
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(500))
    purchase_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    # Cached value of lifecycle.derive_status, refreshed on every write and by the expiry sweep
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available", index=True)  # available|assigned|expired
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), unique=True)  # NULLs never collide
    cost: Mapped[Optional[float]] = mapped_column(Float)
    vendor: Mapped[Optional[str]] = mapped_column(String(100))
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    assignee = relationship("User", foreign_keys=[assigned_to])
    creator = relationship("User", foreign_keys=[created_by])
    allocations = relationship("Allocation", back_populates="asset", cascade="all, delete-orphan", order_by="Allocation.allocation_date.desc()")

    # Indexes
    __table_args__ = (
        Index('idx_asset_type_status', 'type', 'status'),
        Index('idx_asset_assigned_status', 'assigned_to', 'status'),
        Index('idx_asset_expiry_status', 'expiry_date', 'status'),
    )


class Allocation(Base):
    """Time-bounded assignment of one asset to one user"""
    __tablename__ = "allocations"

    id: Mapped[uuid.UUID] = uuid_pk()
    asset_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    allocation_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    return_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)  # active|returned|pending
    notes: Mapped[Optional[str]] = mapped_column(String(500))
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    asset = relationship("Asset", back_populates="allocations")
    user = relationship("User", foreign_keys=[user_id])
    creator = relationship("User", foreign_keys=[created_by])

    # Indexes
    __table_args__ = (
        Index('idx_allocation_user_status', 'user_id', 'status'),
        Index('idx_allocation_asset_status', 'asset_id', 'status'),
        # At most one active allocation per asset, enforced by the store
        Index(
            'uq_allocation_active_asset',
            'asset_id',
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )


class Notification(Base):
    """Notification records for email delivery"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="email")
    template_key: Mapped[Optional[str]] = mapped_column(String(100))  # asset_expiring|asset_expired|asset_assigned|asset_returned
    payload_json: Mapped[Optional[dict]] = mapped_column(JSON)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|skipped|failed
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Indexes
    __table_args__ = (
        Index('idx_notifications_user_status', 'user_id', 'status'),
        Index('idx_notifications_created', 'created_at'),
    )
