from __future__ import annotations

from datetime import date
import logging
from typing import Protocol

from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationGateway(Protocol):
    """Outbound side of the replacement workflow.

    Delivery (push, email, SMS) happens outside the core. Implementations must
    not commit the session; the caller owns the transaction.
    """

    def notify(self, teacher_id: str, offer_summary: dict) -> None: ...

    def alert(self, admin_id: str, slot: dict, on_date: date, reason: str) -> None: ...


EVENT_TITLES = {
    "offer.created": "Substitution request",
    "offer.cancelled": "Substitution withdrawn",
    "offer.expired": "Substitution request expired",
    "override.reverted": "Substitution cancelled",
}


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.system,
    payload: dict | None = None,
) -> Notification:
    record = Notification(
        user_id=user_id,
        title=title,
        message=message,
        notification_type=notification_type,
        payload=payload or {},
    )
    db.add(record)
    db.flush()
    return record


def notify_users(
    db: Session,
    *,
    user_ids: list[str] | set[str] | tuple[str, ...],
    title: str,
    message: str,
    notification_type: NotificationType = NotificationType.system,
    payload: dict | None = None,
    exclude_user_id: str | None = None,
) -> list[Notification]:
    requested_ids = [item for item in dict.fromkeys(user_ids) if item and item != exclude_user_id]
    return [
        create_notification(
            db,
            user_id=user_id,
            title=title,
            message=message,
            notification_type=notification_type,
            payload=payload,
        )
        for user_id in requested_ids
    ]


def _describe_slot(slot: dict) -> str:
    subject = slot.get("subject_id") or "a period"
    return f"{subject} for class {slot.get('class_id')} on {slot.get('day')} period {slot.get('period')}"


class DatabaseNotificationGateway:
    """Default gateway: stores a Notification row per message and logs it."""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, teacher_id: str, offer_summary: dict) -> None:
        event = offer_summary.get("event", "offer.created")
        title = EVENT_TITLES.get(event, "Timetable update")
        when = offer_summary.get("date")
        message = f"{_describe_slot(offer_summary)} ({when})"
        if event == "offer.created" and offer_summary.get("expires_at"):
            message += f". Please respond before {offer_summary['expires_at']}."
        create_notification(
            self.db,
            user_id=teacher_id,
            title=title,
            message=message,
            notification_type=NotificationType.replacement,
            payload=offer_summary,
        )
        logger.info("Notified teacher %s: %s", teacher_id, event)

    def alert(self, admin_id: str, slot: dict, on_date: date, reason: str) -> None:
        create_notification(
            self.db,
            user_id=admin_id,
            title="Unfilled substitution",
            message=f"No substitute found for {_describe_slot(slot)} on {on_date.isoformat()}: {reason}",
            notification_type=NotificationType.alert,
            payload={**slot, "date": on_date.isoformat(), "reason": reason},
        )
        logger.warning(
            "Unfilled slot alert for class %s %s period %s on %s: %s",
            slot.get("class_id"),
            slot.get("day"),
            slot.get("period"),
            on_date.isoformat(),
            reason,
        )
