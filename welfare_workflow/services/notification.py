"""
Welfare Case Workflow Engine
Notification Service.

The transition engine queues notifications while it works and hands the
batch over only after its own transaction has committed. Delivery is best
effort: a failure here is logged and rolled back on its own, never undoing
the transition that triggered it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import NamedTuple

from welfare_workflow.core.exceptions import NotFoundError
from welfare_workflow.models import db
from welfare_workflow.models.notification import NOTIFICATION_SEVERITIES, Notification

logger = logging.getLogger(__name__)


class PendingNotification(NamedTuple):
    user_id: int
    case_id: int | None
    title: str
    message: str = ""
    severity: str = "info"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(*, user_id, case_id, title, message="", severity="info"):
        """Create a single notification. Flushes; caller commits."""
        if severity not in NOTIFICATION_SEVERITIES:
            logger.warning("Unknown notification severity %r, using info", severity)
            severity = "info"
        notif = Notification(
            user_id=user_id,
            case_id=case_id,
            title=title,
            message=message,
            severity=severity,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @staticmethod
    def dispatch(pending: list[PendingNotification]) -> int:
        """Persist a post-commit batch, de-duplicated per (user, case, title).

        Returns the number delivered; 0 when the batch failed.
        """
        seen = set()
        batch = []
        for item in pending:
            key = (item.user_id, item.case_id, item.title)
            if item.user_id is None or key in seen:
                continue
            seen.add(key)
            batch.append(item)
        if not batch:
            return 0

        try:
            for item in batch:
                NotificationService.notify(**item._asdict())
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification dispatch failed for %d recipient(s)", len(batch),
                extra={"case_id": batch[0].case_id},
            )
            return 0
        return len(batch)

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a user, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Other users' rows are 404."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
