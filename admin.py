import logging

from sqlalchemy import func, or_

from models import REPORT_STATUSES, Farm, Farmer, Report, User, page_of

logger = logging.getLogger(__name__)


class AdminService:
    """Dashboard numbers and the farmer directory."""

    def __init__(self, session):
        self.session = session

    def stats(self):
        total_farmers = self.session.query(func.count(Farmer.id)).scalar()

        by_status = dict(self.session.query(Report.status, func.count(Report.id))
                         .group_by(Report.status).all())

        by_type_query = (self.session.query(Report.type, func.count(Report.id))
                         .group_by(Report.type).all())
        by_type = [{'type': report_type, 'count': count} for report_type, count in by_type_query]

        by_barangay_query = (self.session.query(Report.location, func.count(Report.id))
                             .filter(Report.location.isnot(None))
                             .group_by(Report.location)
                             .order_by(func.count(Report.id).desc()).all())
        by_barangay = [{'barangay': name, 'count': count} for name, count in by_barangay_query]

        recent = self.session.query(Report).order_by(Report.created_at.desc()).limit(5).all()

        data = {
            'totalFarmers': total_farmers,
            'totalReports': sum(by_status.values()),
            'reportsByType': by_type,
            'reportsByBarangay': by_barangay,
            'recentReports': [r.to_dict(include_reporter=True) for r in recent]
        }
        for status in REPORT_STATUSES:
            data[f'{status}Reports'] = by_status.get(status, 0)
        return data

    def _directory_entry(self, farmer):
        report_count = (self.session.query(func.count(Report.id))
                        .filter(Report.user_id == farmer.user_id).scalar())
        hectares = sum(float(f.farm_size_hectares) for f in farmer.farms if f.farm_size_hectares is not None)
        data = farmer.to_dict()
        data.update({
            'email': farmer.user.email,
            'username': farmer.user.username,
            'is_active': farmer.user.is_active,
            'farm_barangay': farmer.farms[0].location_barangay if farmer.farms else None,
            'report_count': report_count,
            'farm_count': len(farmer.farms),
            'total_hectares': round(hectares, 2)
        })
        return data

    def farmers(self, page=1, limit=20, search=None, barangay=None):
        query = self.session.query(Farmer).join(User, Farmer.user_id == User.id)

        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(
                    Farmer.first_name.ilike(search_term),
                    Farmer.last_name.ilike(search_term),
                    Farmer.rsbsa_id.ilike(search_term),
                    User.email.ilike(search_term)
                )
            )

        if barangay:
            query = query.filter(or_(Farmer.address_barangay == barangay,
                                     Farmer.farms.any(Farm.location_barangay == barangay)))

        query = query.order_by(Farmer.last_name.asc(), Farmer.first_name.asc())
        return page_of(query, page, limit, self._directory_entry)
