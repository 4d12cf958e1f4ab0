import uuid
from datetime import timedelta

import pytest

from assethub.errors import ConflictError, NotFoundError, ValidationError
from assethub.schemas.assets import AssetCreate, AssetUpdate
from assethub.services import assets
from assethub.services.lifecycle import AssetStatus, Classification, utcnow
from assethub.services.query import PageParams

from conftest import make_asset, make_user


def _create(db, admin, **overrides):
    now = utcnow()
    fields = dict(
        name="MacBook Pro",
        type="hardware",
        category="Laptop",
        purchase_date=now - timedelta(days=30),
        expiry_date=now + timedelta(days=700),
    )
    fields.update(overrides)
    return assets.create_asset(db, AssetCreate(**fields), created_by=admin.id)


def test_create_derives_status(db, admin, employee):
    available = _create(db, admin)
    assert available.status == AssetStatus.available.value
    assert available.created_by == admin.id

    assigned = _create(db, admin, name="Monitor", assigned_to=employee.id)
    assert assigned.status == AssetStatus.assigned.value

    now = utcnow()
    expired = _create(
        db, admin, name="Old License", assigned_to=employee.id,
        purchase_date=now - timedelta(days=400), expiry_date=now - timedelta(days=5),
    )
    assert expired.status == AssetStatus.expired.value


def test_create_rejects_bad_date_order(db, admin):
    now = utcnow()
    with pytest.raises(ValidationError):
        _create(db, admin, purchase_date=now, expiry_date=now)


def test_create_defaults_purchase_date_to_now(db, admin):
    asset = _create(db, admin, purchase_date=None, expiry_date=None)
    assert asset.purchase_date is not None


def test_serial_numbers_are_unique_when_present(db, admin):
    _create(db, admin, serial_number="SN-1")
    with pytest.raises(ConflictError) as exc:
        _create(db, admin, name="Other", serial_number="SN-1")
    assert exc.value.message == "Asset with this serial number already exists"
    # Missing serials never collide
    _create(db, admin, name="No serial A")
    _create(db, admin, name="No serial B", serial_number="")


def test_partial_update_checks_stored_counterpart(db, admin):
    asset = _create(db, admin)
    with pytest.raises(ValidationError):
        assets.update_asset(db, asset.id, AssetUpdate(expiry_date=asset.purchase_date - timedelta(days=1)))
    with pytest.raises(ValidationError):
        assets.update_asset(db, asset.id, AssetUpdate(purchase_date=asset.expiry_date + timedelta(days=1)))


def test_update_recomputes_status(db, admin):
    asset = _create(db, admin)
    now = utcnow()
    updated = assets.update_asset(db, asset.id, AssetUpdate(expiry_date=now - timedelta(days=1)))
    assert updated.status == AssetStatus.expired.value
    updated = assets.update_asset(db, asset.id, AssetUpdate(expiry_date=None))
    assert updated.status == AssetStatus.available.value


def test_update_serial_keeps_own_value(db, admin):
    asset = _create(db, admin, serial_number="SN-9")
    updated = assets.update_asset(db, asset.id, AssetUpdate(serial_number="SN-9", vendor="Apple"))
    assert updated.vendor == "Apple"


def test_get_missing_asset(db):
    with pytest.raises(NotFoundError):
        assets.get_asset(db, uuid.uuid4())


def test_assign_unassign_round_trip(db, admin, employee):
    asset = make_asset(db, admin)
    assigned = assets.assign_asset(db, asset.id, employee.id)
    assert assigned.status == AssetStatus.assigned.value
    assert assigned.assigned_to == employee.id

    released = assets.unassign_asset(db, asset.id)
    assert released.status == AssetStatus.available.value
    assert released.assigned_to is None


def test_assign_requires_available(db, admin, employee):
    asset = make_asset(db, admin, assigned_to=employee.id)
    with pytest.raises(ConflictError) as exc:
        assets.assign_asset(db, asset.id, admin.id)
    assert exc.value.message == "Asset is not available for assignment"

    expired = make_asset(db, admin, name="Expired", purchase_days=-400, expiry_days=-1)
    with pytest.raises(ConflictError):
        assets.assign_asset(db, expired.id, employee.id)


def test_unassign_requires_assigned(db, admin):
    asset = make_asset(db, admin)
    with pytest.raises(ConflictError) as exc:
        assets.unassign_asset(db, asset.id)
    assert exc.value.message == "Asset is not currently assigned"


def test_delete_blocked_while_assigned(db, admin, employee):
    asset = make_asset(db, admin, assigned_to=employee.id)
    with pytest.raises(ConflictError):
        assets.delete_asset(db, asset.id)
    assets.unassign_asset(db, asset.id)
    assets.delete_asset(db, asset.id)
    with pytest.raises(NotFoundError):
        assets.get_asset(db, asset.id)


def test_find_expiring_window(db, admin, employee):
    soon = make_asset(db, admin, name="Soon", expiry_days=10, assigned_to=employee.id)
    make_asset(db, admin, name="Later", expiry_days=45)
    make_asset(db, admin, name="Gone", purchase_days=-400, expiry_days=-5)
    make_asset(db, admin, name="Forever", expiry_days=None)

    found = assets.find_expiring(db, 30)
    assert [a.id for a in found] == [soon.id]


def test_sweep_is_idempotent(db, admin):
    asset = make_asset(db, admin, expiry_days=10)
    later = utcnow() + timedelta(days=20)

    assert [a.id for a in assets.find_expired(db, later)] == [asset.id]
    assert assets.sweep_expired(db, later) == {"matched_count": 1, "modified_count": 1}
    assert assets.sweep_expired(db, later)["matched_count"] == 0

    db.expire_all()
    assert assets.get_asset(db, asset.id).status == AssetStatus.expired.value


def test_list_filters_use_current_time(db, admin, employee):
    make_asset(db, admin, name="Laptop A", expiry_days=10)
    make_asset(db, admin, name="Laptop B", assigned_to=employee.id)
    make_asset(db, admin, name="Phone", asset_type="equipment", purchase_days=5, expiry_days=200)

    params = PageParams(sort_by="name", sort_order="asc")
    # Stored status still says available; the filter sees it as expired
    later = utcnow() + timedelta(days=20)
    expired = assets.list_assets(db, assets.AssetFilters(status=AssetStatus.expired), params, now=later)
    assert [a.name for a in expired.items] == ["Laptop A"]

    assigned = assets.list_assets(db, assets.AssetFilters(status=AssetStatus.assigned), params)
    assert [a.name for a in assigned.items] == ["Laptop B"]

    upcoming = assets.list_assets(db, assets.AssetFilters(classification=Classification.upcoming), params)
    assert [a.name for a in upcoming.items] == ["Phone"]

    searched = assets.list_assets(db, assets.AssetFilters(search="laptop", type="hardware"), params)
    assert searched.total == 2


def test_stats(db, admin, employee):
    make_asset(db, admin, name="A", expiry_days=10)
    make_asset(db, admin, name="B", assigned_to=employee.id)
    make_asset(db, admin, name="C", asset_type="license", purchase_days=-400, expiry_days=-3)

    stats = assets.asset_stats(db)
    assert stats["total_assets"] == 3
    assert stats["available_assets"] == 1
    assert stats["assigned_assets"] == 1
    assert stats["expired_assets"] == 1
    assert stats["expiring_assets"] == 1
    assert stats["by_type"] == {"hardware": 2, "license": 1}


def test_by_type_and_available(db, admin, employee):
    make_asset(db, admin, name="Key", asset_type="license")
    make_asset(db, admin, name="Car", asset_type="vehicle", assigned_to=employee.id)
    assert [a.name for a in assets.assets_by_type(db, "vehicle")] == ["Car"]
    assert [a.name for a in assets.available_assets(db)] == ["Key"]


def test_assign_to_inactive_user_is_rejected(db, admin):
    asset = make_asset(db, admin)
    ghost = make_user(db, name="Gone User", is_active=False)
    with pytest.raises(ConflictError):
        assets.assign_asset(db, asset.id, ghost.id)
