"""Report lifecycle: submission, history, admin review and status transitions."""
import base64
import binascii
import logging

from sqlalchemy import or_

from errors import Forbidden, NotFound, PayloadTooLarge, ValidationError
from models import Farm, Farmer, Report, ReportComment, page_of, utcnow
from schemas import CommentCreate, ReportCreate, StatusUpdate, validate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    'created_at': Report.created_at,
    'type': Report.type,
    'status': Report.status,
    'location': Report.location
}


def decoded_photo_size(photo):
    """Byte size of a base64 photo (plain or ``data:`` URL). Raises ValueError when not base64."""
    if photo.startswith('data:'):
        _, _, photo = photo.partition(',')
    try:
        return len(base64.b64decode(''.join(photo.split()), validate=True))
    except (binascii.Error, ValueError):
        raise ValueError('photo is not valid base64') from None


def _filtered(query, status=None, type=None):
    if status and status != 'all':
        query = query.filter(Report.status == status)
    if type and type != 'all':
        query = query.filter(Report.type == type)
    return query


class ReportService:

    def __init__(self, session, dispatcher, recorder, max_photo_bytes):
        self.session = session
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.max_photo_bytes = max_photo_bytes

    def _check_photo(self, photo):
        if not photo:
            return None
        try:
            size = decoded_photo_size(photo)
        except ValueError as e:
            raise ValidationError.single('photoBase64', str(e)) from None
        if size > self.max_photo_bytes:
            logger.info("Rejected %d byte photo (limit %d)", size, self.max_photo_bytes)
            raise PayloadTooLarge(f'Photo exceeds the {self.max_photo_bytes // (1024 * 1024)} MB limit')
        return photo

    def _owned_farm(self, principal, farm_id):
        farm = (self.session.query(Farm)
                .join(Farmer, Farm.farmer_id == Farmer.id)
                .filter(Farm.id == farm_id, Farmer.user_id == principal.id)
                .first())
        if farm is None:
            raise ValidationError.single('farmId', 'farm not found for this account')
        return farm

    def _get(self, report_id):
        report = self.session.get(Report, report_id)
        if report is None:
            raise NotFound('Report not found')
        return report

    # --- Farmer side ---

    def submit(self, principal, payload, context=None):
        data = validate(ReportCreate, payload)
        photo = self._check_photo(data.photo_base64)
        farm = self._owned_farm(principal, data.farm_id) if data.farm_id else None

        report = Report(
            user_id=principal.id,
            farm_id=farm.id if farm else None,
            type=data.type,
            status='pending',
            details=data.details.model_dump(by_alias=True, exclude_none=True) if data.details else {},
            location=data.location or (farm.location_barangay if farm else None),
            latitude=data.latitude,
            longitude=data.longitude,
            photo_base64=photo
        )
        self.session.add(report)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        report_id = report.id
        logger.info("Report %s (%s) submitted by %s", report_id, data.type, principal.id)
        self.recorder.record(principal.id, 'report_submit', 'report', report_id,
                             details={'type': data.type}, context=context)
        self.dispatcher.notify_admins('new_report', f'New {data.type} report',
                                      f'A new {data.type} report has been submitted', report_id)
        return self._get(report_id).to_dict(include_photo=True)

    def history(self, principal, page=1, limit=10, status=None, type=None):
        query = _filtered(self.session.query(Report).filter(Report.user_id == principal.id), status, type)
        return page_of(query.order_by(Report.created_at.desc()), page, limit, Report.to_dict)

    def get(self, principal, report_id):
        report = self._get(report_id)
        if report.user_id != principal.id and not principal.is_admin:
            raise Forbidden('You do not have access to this report')
        return report.to_dict(include_reporter=True)

    # --- Admin side ---

    def _admin_query(self, status=None, type=None, barangay=None):
        query = _filtered(self.session.query(Report), status, type)
        if barangay:
            query = (query.outerjoin(Farm, Report.farm_id == Farm.id)
                     .filter(or_(Report.location == barangay, Farm.location_barangay == barangay)))
        return query

    def list_all(self, page=1, limit=20, status=None, type=None, barangay=None, sort_by='created_at', sort_order='desc'):
        column = SORT_COLUMNS.get(sort_by, Report.created_at)
        order = column.asc() if (sort_order or '').lower() == 'asc' else column.desc()
        query = self._admin_query(status, type, barangay).order_by(order)
        return page_of(query, page, limit, lambda r: r.to_dict(include_reporter=True))

    def map_points(self, status=None, type=None, barangay=None):
        query = (self._admin_query(status, type, barangay)
                 .filter(Report.latitude.isnot(None), Report.longitude.isnot(None))
                 .order_by(Report.created_at.desc()))
        return [r.to_dict(include_reporter=True) for r in query.all()]

    def transition(self, principal, report_id, payload, context=None):
        """Move a report to a new status and tell its reporter."""
        data = validate(StatusUpdate, payload)
        report = self._get(report_id)
        previous = report.status

        report.status = data.status
        report.admin_notes = data.admin_notes
        report.verified_by = principal.id
        report.verified_at = utcnow()
        self.session.commit()

        logger.info("Report %s: %s -> %s by %s", report_id, previous, data.status, principal.id)
        self.dispatcher.notify_user(report.user_id, 'status_change', f'Report {data.status}',
                                    f'Your {report.type} report has been {data.status}', report_id)
        self.recorder.record(principal.id, 'report_status_update', 'report', report_id,
                             details={'from': previous, 'to': data.status}, context=context)
        return self._get(report_id).to_dict(include_reporter=True)

    def photo(self, report_id):
        report = self._get(report_id)
        if not report.photo_base64:
            raise NotFound('Photo not found')
        return {'photo': report.photo_base64}

    # --- Comments ---

    def _commentable(self, principal, report_id):
        report = self._get(report_id)
        if report.user_id != principal.id and not principal.is_admin:
            raise Forbidden('You do not have access to this report')
        return report

    def comments(self, principal, report_id):
        report = self._commentable(principal, report_id)
        return [c.to_dict() for c in report.comments]

    def add_comment(self, principal, report_id, payload, context=None):
        data = validate(CommentCreate, payload)
        report = self._commentable(principal, report_id)
        comment = ReportComment(report_id=report.id, user_id=principal.id,
                                message=data.message, is_admin=principal.is_admin)
        self.session.add(comment)
        self.session.commit()
        comment_id = comment.id

        self.recorder.record(principal.id, 'comment_add', 'report', report.id, context=context)
        if principal.is_admin:
            if report.user_id != principal.id:
                self.dispatcher.notify_user(report.user_id, 'comment', 'New comment on your report',
                                            f'An administrator commented on your {report.type} report', report.id)
        else:
            self.dispatcher.notify_admins('comment', f'New comment on {report.type} report',
                                          f'{principal.name or "A farmer"} commented on a {report.type} report', report.id)
        return self.session.get(ReportComment, comment_id).to_dict()
