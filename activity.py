import logging

from sqlalchemy.exc import SQLAlchemyError

from models import ActivityLog, page_of

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """Append-only audit trail. A failed write is logged and dropped."""

    def __init__(self, session):
        self.session = session

    def record(self, user_id, action, entity_type=None, entity_id=None, details=None, context=None):
        context = context or {}
        try:
            log = ActivityLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id) if entity_id else None,
                details=details,
                ip_address=context.get('ip_address'),
                user_agent=(context.get('user_agent') or '')[:255] or None
            )
            self.session.add(log)
            self.session.commit()
            return log
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Could not record activity %s for user %s", action, user_id)
            return None

    def recent(self, page=1, limit=50, user_id=None, action=None):
        query = self.session.query(ActivityLog)
        if user_id:
            query = query.filter(ActivityLog.user_id == user_id)
        if action:
            query = query.filter(ActivityLog.action == action)
        return page_of(query.order_by(ActivityLog.created_at.desc()), page, limit, ActivityLog.to_dict)
