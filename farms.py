"""Farmer-facing profile, dashboard and farm management."""
import logging

from sqlalchemy import func

from errors import Forbidden, NotFound
from models import REPORT_STATUSES, Farm, Farmer, Report
from patching import FARM_FIELDS, FARMER_FIELDS, apply_patch
from schemas import FarmCreate, validate

logger = logging.getLogger(__name__)


class FarmService:

    def __init__(self, session, recorder):
        self.session = session
        self.recorder = recorder

    def _farmer_for(self, principal):
        farmer = self.session.query(Farmer).filter(Farmer.user_id == principal.id).first()
        if farmer is None:
            raise NotFound('Farmer profile not found')
        return farmer

    def _owned_farm(self, principal, farm_id):
        """Load a farm through Farm -> Farmer -> User; unknown is NotFound, someone else's is Forbidden."""
        row = (self.session.query(Farm, Farmer.user_id)
               .join(Farmer, Farm.farmer_id == Farmer.id)
               .filter(Farm.id == farm_id)
               .first())
        if row is None:
            raise NotFound('Farm not found')
        farm, owner_id = row
        if owner_id != principal.id:
            logger.info("User %s tried to modify farm %s owned by %s", principal.id, farm_id, owner_id)
            raise Forbidden('You do not own this farm')
        return farm

    # --- Profile ---

    def dashboard(self, principal):
        farmer = self.session.query(Farmer).filter(Farmer.user_id == principal.id).first()
        first_farm = farmer.farms[0] if farmer and farmer.farms else None

        counts = dict(self.session.query(Report.status, func.count(Report.id))
                      .filter(Report.user_id == principal.id)
                      .group_by(Report.status).all())
        stats = {status: counts.get(status, 0) for status in REPORT_STATUSES}
        stats['total_reports'] = sum(counts.values())

        recent = (self.session.query(Report)
                  .filter(Report.user_id == principal.id)
                  .order_by(Report.created_at.desc())
                  .limit(5).all())

        barangay = None
        if first_farm:
            barangay = first_farm.location_barangay
        if not barangay and farmer:
            barangay = farmer.address_barangay

        return {
            'profile': {
                'name': farmer.full_name if farmer else principal.name,
                'rsbsa': farmer.rsbsa_id if farmer else None,
                'barangay': barangay,
                'municipality': farmer.address_municipality if farmer else None,
                'cellphone': farmer.cellphone if farmer else None,
                'farmSize': float(first_farm.farm_size_hectares) if first_farm and first_farm.farm_size_hectares is not None else None
            },
            'stats': stats,
            'recent_activity': [r.to_dict() for r in recent]
        }

    def profile(self, principal):
        farmer = self._farmer_for(principal)
        data = farmer.to_dict(include_farms=True)
        data['username'] = farmer.user.username
        data['email'] = farmer.user.email
        return data

    def update_profile(self, principal, payload, context=None):
        farmer = self._farmer_for(principal)
        changed = apply_patch(farmer, FARMER_FIELDS, payload)
        if changed:
            self.session.commit()
            self.recorder.record(principal.id, 'profile_update', 'farmer', farmer.id,
                                 details={'fields': changed}, context=context)
        return self.profile(principal)

    # --- Farms ---

    def list_farms(self, principal):
        return [farm.to_dict() for farm in self._farmer_for(principal).farms]

    def add_farm(self, principal, payload, context=None):
        data = validate(FarmCreate, payload)
        farmer = self._farmer_for(principal)
        farm = Farm(farmer_id=farmer.id, **data.model_dump())
        self.session.add(farm)
        self.session.commit()
        self.recorder.record(principal.id, 'farm_add', 'farm', farm.id, context=context)
        logger.info("Farm %s added for farmer %s", farm.id, farmer.id)
        return farm.to_dict()

    def update_farm(self, principal, farm_id, payload, context=None):
        farm = self._owned_farm(principal, farm_id)
        changed = apply_patch(farm, FARM_FIELDS, payload)
        if changed:
            self.session.commit()
            self.recorder.record(principal.id, 'farm_update', 'farm', farm_id,
                                 details={'fields': changed}, context=context)
        return farm.to_dict()

    def delete_farm(self, principal, farm_id, context=None):
        farm = self._owned_farm(principal, farm_id)
        self.session.delete(farm)
        self.session.commit()
        self.recorder.record(principal.id, 'farm_delete', 'farm', farm_id, context=context)
        logger.info("Farm %s deleted by %s", farm_id, principal.id)
