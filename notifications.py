"""Notification fan-out and the recipient-side read operations.

Writes go through :class:`NotificationDispatcher` after the triggering change
has committed. They are best-effort: a failure is rolled back, written to the
``cropaid.notifications`` log and never reaches the caller.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFound, ValidationError
from models import Notification, User

logger = logging.getLogger(__name__)
failure_log = logging.getLogger('cropaid.notifications')


class NotificationDispatcher:

    def __init__(self, session):
        self.session = session

    def dispatch(self, notifications):
        """Persist ``notifications`` in their own commit. Returns how many were written."""
        if not notifications:
            return 0
        try:
            self.session.add_all(notifications)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            failure_log.exception("Dropped %d notification(s) of type %s",
                                  len(notifications), notifications[0].type)
            return 0
        logger.debug("Sent %d %s notification(s)", len(notifications), notifications[0].type)
        return len(notifications)

    def notify_user(self, user_id, type, title, message, reference_id=None):
        return self.dispatch([Notification(user_id=user_id, type=type, title=title,
                                           message=message, reference_id=reference_id)])

    def notify_admins(self, type, title, message, reference_id=None):
        """One row per active admin; a single NULL-recipient row when there are none."""
        try:
            admin_ids = [row.id for row in self.session.query(User.id).filter(User.role == 'admin', User.is_active.is_(True))]
        except SQLAlchemyError:
            self.session.rollback()
            failure_log.exception("Could not look up admins for %s notification", type)
            return 0
        recipients = admin_ids or [None]
        return self.dispatch([
            Notification(user_id=admin_id, type=type, title=title, message=message, reference_id=reference_id)
            for admin_id in recipients
        ])


def parse_since(value):
    if not value:
        return None
    try:
        since = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError.single('since', 'must be an ISO 8601 timestamp') from None
    if since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return since


class NotificationService:
    """Read side: what a signed-in user sees in their notification tray."""

    def __init__(self, session):
        self.session = session

    def _visible_to(self, principal):
        if principal.is_admin:
            return or_(Notification.user_id == principal.id, Notification.user_id.is_(None))
        return Notification.user_id == principal.id

    def _get_own(self, principal, notification_id):
        # Shared admin rows (no recipient) are never changed from one admin's tray
        notification = self.session.query(Notification).filter(
            Notification.id == notification_id, Notification.user_id == principal.id).first()
        if notification is None:
            raise NotFound('Notification not found')
        return notification

    def list_for(self, principal, limit=50):
        rows = (self.session.query(Notification)
                .filter(self._visible_to(principal))
                .order_by(Notification.created_at.desc())
                .limit(limit).all())
        return {
            'notifications': [n.to_dict() for n in rows],
            'unreadCount': self.unread_count(principal)
        }

    def unread_count(self, principal, since=None):
        query = self.session.query(Notification).filter(self._visible_to(principal), Notification.is_read.is_(False))
        if since is not None:
            query = query.filter(Notification.created_at > since)
        return query.count()

    def mark_read(self, principal, notification_id):
        notification = self._get_own(principal, notification_id)
        notification.is_read = True
        self.session.commit()
        return notification

    def mark_all_read(self, principal):
        updated = (self.session.query(Notification)
                   .filter(Notification.user_id == principal.id, Notification.is_read.is_(False))
                   .update({Notification.is_read: True}, synchronize_session=False))
        self.session.commit()
        return updated

    def delete(self, principal, notification_id):
        notification = self._get_own(principal, notification_id)
        self.session.delete(notification)
        self.session.commit()

    def clear_read(self, principal):
        deleted = (self.session.query(Notification)
                   .filter(and_(Notification.user_id == principal.id, Notification.is_read.is_(True)))
                   .delete(synchronize_session=False))
        self.session.commit()
        return deleted
