"""
Email notices about expiring assets and allocation changes.

Every attempt is stored as a ``Notification`` row. Mail goes out over SMTP
only when ``SMTP_HOST`` and ``MAIL_FROM`` are set and ``ENABLE_EMAIL`` is on;
otherwise the row is kept with status ``skipped``. Delivery failures are
logged and recorded, never raised to the caller.
"""
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Allocation, Asset, Notification, User
from . import lifecycle
from .assets import find_expiring


logger = structlog.get_logger(__name__)


TEMPLATES: Dict[str, Dict[str, str]] = {
    "asset_expiring": {
        "subject": "Asset Expiry Alert - {asset_name}",
        "body": (
            "Dear {user_name},\n\n"
            "The following asset is expiring soon:\n\n"
            "Asset: {asset_name}\n"
            "Type: {asset_type}\n"
            "Category: {category}\n"
            "Serial Number: {serial_number}\n"
            "Expiry Date: {expiry_date}\n"
            "Days Until Expiry: {days_until_expiry}\n"
            "Assigned To: {assigned_to}\n\n"
            "Please take necessary action to renew or replace this asset.\n"
        ),
    },
    "asset_expired": {
        "subject": "Asset Expired - {asset_name}",
        "body": (
            "Dear {user_name},\n\n"
            "The following asset has expired:\n\n"
            "Asset: {asset_name}\n"
            "Type: {asset_type}\n"
            "Category: {category}\n"
            "Serial Number: {serial_number}\n"
            "Expiry Date: {expiry_date}\n"
            "Assigned To: {assigned_to}\n\n"
            "Immediate action is required. Please renew or replace this asset.\n"
        ),
    },
    "asset_assigned": {
        "subject": "Asset Assigned - {asset_name}",
        "body": (
            "Dear {user_name},\n\n"
            "The asset {asset_name} ({asset_type}) has been assigned to you on {allocation_date}.\n"
            "Serial Number: {serial_number}\n"
            "Notes: {notes}\n"
        ),
    },
    "asset_returned": {
        "subject": "Asset Returned - {asset_name}",
        "body": (
            "Dear {user_name},\n\n"
            "The return of asset {asset_name} ({asset_type}) was recorded on {return_date}.\n"
        ),
    },
}


def _fmt_date(value: Optional[datetime]) -> str:
    value = lifecycle.as_utc(value)
    return value.strftime("%Y-%m-%d") if value else "N/A"


def _asset_payload(asset: Asset, now: Optional[datetime] = None) -> Dict[str, Any]:
    days = lifecycle.days_until_expiry(asset.expiry_date, now)
    return {
        "asset_id": str(asset.id),
        "asset_name": asset.name,
        "asset_type": asset.type,
        "category": asset.category,
        "serial_number": asset.serial_number or "N/A",
        "expiry_date": _fmt_date(asset.expiry_date),
        "days_until_expiry": days if days is not None else "N/A",
        "assigned_to": asset.assignee.name if asset.assignee is not None else "Unassigned",
    }


def render(template_key: str, payload: Dict[str, Any]):
    template = TEMPLATES[template_key]
    return template["subject"].format(**payload), template["body"].format(**payload)


def email_enabled() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def deliver_email(to: str, subject: str, body: str) -> None:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg.set_content(body)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)


def notify(db: Session, user: User, template_key: str, payload: Dict[str, Any]) -> Notification:
    """Render, attempt delivery and record one notice. The caller commits."""
    payload = dict(payload, user_name=user.name)
    subject, body = render(template_key, payload)
    record = Notification(user_id=user.id, channel="email", template_key=template_key, payload_json=payload)
    if not email_enabled():
        record.status = "skipped"
        logger.info("notification_skipped", template=template_key, user_id=str(user.id))
    else:
        try:
            deliver_email(user.email, subject, body)
            record.status = "sent"
            record.sent_at = lifecycle.utcnow()
            logger.info("notification_sent", template=template_key, user_id=str(user.id))
        except (smtplib.SMTPException, OSError) as e:
            record.status = "failed"
            record.error_message = str(e)
            logger.warning("notification_failed", template=template_key, user_id=str(user.id), error=str(e))
    db.add(record)
    return record


def send_expiry_notifications(db: Session, days: int = 30, now: Optional[datetime] = None) -> Dict[str, int]:
    """Tell every active admin about each asset expiring within ``days``."""
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    expiring = find_expiring(db, days, now)
    admins: List[User] = (
        db.query(User).filter(User.role == "admin", User.is_active.is_(True)).all()
    )
    records = []
    for asset in expiring:
        payload = _asset_payload(asset, now)
        remaining = lifecycle.days_until_expiry(asset.expiry_date, now)
        template_key = "asset_expired" if remaining is not None and remaining <= 0 else "asset_expiring"
        for admin in admins:
            records.append(notify(db, admin, template_key, payload))
    db.commit()

    summary = {
        "assets": len(expiring),
        "recipients": len(admins),
        "sent": sum(1 for r in records if r.status == "sent"),
        "failed": sum(1 for r in records if r.status == "failed"),
    }
    logger.info("expiry_notifications_processed", days=days, **summary)
    return summary


def _send_allocation_notice(db: Session, allocation: Allocation, template_key: str) -> Optional[Notification]:
    allocation_id = str(allocation.id)
    try:
        payload = _asset_payload(allocation.asset)
        payload.update(
            allocation_id=allocation_id,
            allocation_date=_fmt_date(allocation.allocation_date),
            return_date=_fmt_date(allocation.return_date),
            notes=allocation.notes or "",
        )
        record = notify(db, allocation.user, template_key, payload)
        db.commit()
        return record
    except Exception as e:
        db.rollback()
        logger.warning("allocation_notice_failed", template=template_key, allocation_id=allocation_id, error=str(e))
        return None


def send_assignment_notification(db: Session, allocation: Allocation) -> Optional[Notification]:
    return _send_allocation_notice(db, allocation, "asset_assigned")


def send_return_notification(db: Session, allocation: Allocation) -> Optional[Notification]:
    return _send_allocation_notice(db, allocation, "asset_returned")
