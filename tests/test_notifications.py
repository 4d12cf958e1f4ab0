import smtplib

import pytest

from assethub.config import settings
from assethub.models.models import Notification
from assethub.services import notifications

from conftest import make_asset, make_user


@pytest.fixture()
def smtp_enabled(monkeypatch):
    monkeypatch.setattr(settings, "enable_email", True)
    monkeypatch.setattr(settings, "smtp_host", "smtp.example.com")
    monkeypatch.setattr(settings, "mail_from", "assets@example.com")


def test_expiry_notices_go_to_active_admins(db, admin, employee):
    make_user(db, name="Retired Admin", role="admin", is_active=False)
    make_asset(db, admin, name="VPN License", asset_type="license", expiry_days=7, serial_number="VPN-1")
    make_asset(db, admin, name="Server", expiry_days=200)

    summary = notifications.send_expiry_notifications(db, 30)
    assert summary == {"assets": 1, "recipients": 1, "sent": 0, "failed": 0}

    record = db.query(Notification).one()
    assert record.user_id == admin.id
    assert record.template_key == "asset_expiring"
    assert record.status == "skipped"
    assert record.payload_json["asset_name"] == "VPN License"
    assert record.payload_json["days_until_expiry"] == 7


def test_delivery_success_is_recorded(db, admin, smtp_enabled, monkeypatch):
    sent = []
    monkeypatch.setattr(notifications, "deliver_email", lambda to, subject, body: sent.append((to, subject, body)))
    make_asset(db, admin, name="Domain", asset_type="domain", expiry_days=1)

    summary = notifications.send_expiry_notifications(db, 1)
    assert summary["sent"] == 1
    to, subject, body = sent[0]
    assert to == admin.email
    assert subject == "Asset Expiry Alert - Domain"
    assert "Dear Alice Admin" in body
    record = db.query(Notification).one()
    assert record.status == "sent"
    assert record.sent_at is not None


def test_delivery_failure_is_recorded_not_raised(db, admin, smtp_enabled, monkeypatch):
    def refuse(to, subject, body):
        raise smtplib.SMTPException("relay denied")

    monkeypatch.setattr(notifications, "deliver_email", refuse)
    make_asset(db, admin, name="Hosting", asset_type="hosting", expiry_days=2)

    summary = notifications.send_expiry_notifications(db, 30)
    assert summary["failed"] == 1
    record = db.query(Notification).one()
    assert record.status == "failed"
    assert "relay denied" in record.error_message


def test_render_templates():
    subject, body = notifications.render(
        "asset_returned",
        {"user_name": "Eve", "asset_name": "Laptop", "asset_type": "hardware", "return_date": "2024-07-01"},
    )
    assert subject == "Asset Returned - Laptop"
    assert "2024-07-01" in body

