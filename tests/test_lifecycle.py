import uuid
from datetime import datetime, timedelta, timezone

import pytest

from assethub.errors import ValidationError
from assethub.services.lifecycle import (
    AssetStatus,
    Classification,
    as_utc,
    classify,
    days_until_expiry,
    derive_status,
    expiry_status,
    validate_date_order,
)


NOW = datetime(2024, 7, 1, tzinfo=timezone.utc)
PURCHASE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_expiry_overrides_assignment():
    expiry = datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert derive_status(PURCHASE, expiry, uuid.uuid4(), NOW) == AssetStatus.expired
    assert derive_status(PURCHASE, expiry, None, NOW) == AssetStatus.expired
    assert classify(PURCHASE, expiry, NOW) == Classification.expired


def test_assigned_and_available():
    expiry = NOW + timedelta(days=10)
    assert derive_status(PURCHASE, expiry, uuid.uuid4(), NOW) == AssetStatus.assigned
    assert derive_status(PURCHASE, expiry, None, NOW) == AssetStatus.available
    assert derive_status(PURCHASE, None, None, NOW) == AssetStatus.available


def test_expiry_exactly_now_is_not_expired():
    assert derive_status(PURCHASE, NOW, None, NOW) == AssetStatus.available


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2024, 6, 1)
    assert as_utc(naive) == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert derive_status(PURCHASE, naive, None, NOW) == AssetStatus.expired


@pytest.mark.parametrize("expiry", [PURCHASE, PURCHASE - timedelta(days=1)])
def test_expiry_must_follow_purchase(expiry):
    with pytest.raises(ValidationError) as exc:
        validate_date_order(PURCHASE, expiry)
    assert exc.value.message == "Expiry date must be after purchase date"
    assert exc.value.errors[0]["field"] == "expiry_date"


def test_date_order_ignores_missing_side():
    validate_date_order(PURCHASE, None)
    validate_date_order(None, PURCHASE)
    validate_date_order(PURCHASE, PURCHASE + timedelta(seconds=1))


def test_classification_buckets():
    future_purchase = NOW + timedelta(days=5)
    assert classify(future_purchase, future_purchase + timedelta(days=30), NOW) == Classification.upcoming
    assert classify(PURCHASE, None, NOW) == Classification.ongoing
    assert classify(PURCHASE, NOW + timedelta(days=1), NOW) == Classification.ongoing


def test_classification_is_independent_of_status():
    future_purchase = NOW + timedelta(days=5)
    expiry = future_purchase + timedelta(days=30)
    assert derive_status(future_purchase, expiry, uuid.uuid4(), NOW) == AssetStatus.assigned
    assert classify(future_purchase, expiry, NOW) == Classification.upcoming


def test_days_until_expiry_rounds_up():
    assert days_until_expiry(None, NOW) is None
    assert days_until_expiry(NOW + timedelta(hours=1), NOW) == 1
    assert days_until_expiry(NOW + timedelta(days=10), NOW) == 10
    assert days_until_expiry(NOW - timedelta(days=2, hours=1), NOW) == -2


@pytest.mark.parametrize(
    "delta,expected",
    [
        (None, "no-expiry"),
        (timedelta(days=-3), "expired"),
        (timedelta(days=30), "expiring-soon"),
        (timedelta(days=31), "expiring-later"),
        (timedelta(days=90), "expiring-later"),
        (timedelta(days=91), "valid"),
    ],
)
def test_expiry_status(delta, expected):
    expiry = NOW + delta if delta is not None else None
    assert expiry_status(expiry, NOW) == expected
