"""Accounts: farmer registration, login and admin user provisioning."""
import logging

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from credentials import issue_token, verify_password
from errors import Conflict, Forbidden, InvalidCredentials, NotFound
from models import Farm, Farmer, User
from schemas import AdminUserCreate, AdminUserUpdate, FarmerStatusUpdate, LoginRequest, RegistrationRequest, validate

logger = logging.getLogger(__name__)

# Checked in this order; the first column named in the store's message wins
UNIQUE_FIELDS = (
    ('rsbsa_id', 'RSBSA ID already registered'),
    ('email', 'Email already registered'),
    ('username', 'Username already taken'),
)


def conflict_from_integrity_error(error):
    """Map a unique-constraint violation to a Conflict naming the offending field."""
    text = str(getattr(error, 'orig', error)).lower()
    # MySQL: "Duplicate entry 'x' for key 'farmers.rsbsa_id'"; SQLite: "UNIQUE constraint failed: farmers.rsbsa_id"
    for marker in ('for key', 'failed:'):
        if marker in text:
            text = text.rsplit(marker, 1)[1]
            break
    for field, message in UNIQUE_FIELDS:
        if field in text:
            return Conflict(field, message)
    return Conflict('unknown', 'Record already exists')


class AccountService:

    def __init__(self, session, recorder):
        self.session = session
        self.recorder = recorder

    # --- Registration ---

    def register(self, payload):
        """Create the User, Farmer and first Farm in one transaction; return the new user id."""
        data = validate(RegistrationRequest, payload)
        config = current_app.config
        try:
            user = User(username=data.username, email=data.email, role='farmer', is_active=True)
            user.set_password(data.password)
            self.session.add(user)
            self.session.flush()

            farmer = Farmer(
                user_id=user.id,
                rsbsa_id=data.rsbsa_id,
                first_name=data.first_name,
                middle_name=data.middle_name,
                last_name=data.last_name,
                tribe=data.tribe,
                address_sitio=data.street_sitio,
                address_barangay=data.barangay,
                address_municipality=data.municipality or config['DEFAULT_MUNICIPALITY'],
                address_province=data.province or config['DEFAULT_PROVINCE'],
                cellphone=data.cellphone,
                sex=data.sex,
                date_of_birth=data.date_of_birth,
                civil_status=data.civil_status
            )
            self.session.add(farmer)
            self.session.flush()

            farm = Farm(
                farmer_id=farmer.id,
                location_sitio=data.farm_sitio,
                location_barangay=data.farm_barangay,
                location_municipality=data.farm_municipality or config['DEFAULT_MUNICIPALITY'],
                location_province=data.farm_province or config['DEFAULT_PROVINCE'],
                latitude=data.farm_latitude,
                longitude=data.farm_longitude,
                farm_size_hectares=data.farm_size,
                boundary_north=data.boundary_north,
                boundary_south=data.boundary_south,
                boundary_east=data.boundary_east,
                boundary_west=data.boundary_west
            )
            self.session.add(farm)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            conflict = conflict_from_integrity_error(e)
            logger.info("Registration rejected: duplicate %s", conflict.field)
            raise conflict from None
        except Exception:
            self.session.rollback()
            raise

        logger.info("Registered farmer %s (user %s)", data.rsbsa_id, user.id)
        return user.id

    # --- Login ---

    def login(self, payload, context=None):
        data = validate(LoginRequest, payload)
        identifier = data.identifier
        matches = (self.session.query(User)
                   .outerjoin(Farmer, Farmer.user_id == User.id)
                   .filter(or_(User.username == identifier,
                               User.email == identifier,
                               Farmer.rsbsa_id == identifier),
                           User.is_active.is_(True))
                   .limit(2).all())

        user = matches[0] if len(matches) == 1 else None
        if user is None:
            # Same cost as a wrong password
            verify_password(data.password, None)
            logger.info("Login failed for %r (%d matches)", identifier, len(matches))
            raise InvalidCredentials()
        if not user.check_password(data.password):
            logger.info("Login failed for %r (bad password)", identifier)
            raise InvalidCredentials()

        name = user.display_name
        token = issue_token(user.id, user.role, name)
        self.recorder.record(user.id, 'login', 'user', user.id, context=context)
        logger.info("User %s logged in as %s", user.id, user.role)

        return {
            'token': token,
            'role': user.role,
            'user': {
                'id': user.id,
                'name': name,
                'rsbsa': user.farmer.rsbsa_id if user.farmer else None,
                'email': user.email,
                'username': user.username
            }
        }

    # --- Admin user management ---

    def list_users(self):
        users = self.session.query(User).order_by(User.created_at.desc()).all()
        return [user.to_dict() for user in users]

    def _get_user(self, user_id):
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound('User not found')
        return user

    def create_user(self, payload):
        data = validate(AdminUserCreate, payload)
        user = User(username=data.username, email=data.email, role=data.role, is_active=True)
        user.set_password(data.password)
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise conflict_from_integrity_error(e) from None
        logger.info("Provisioned %s account %s", user.role, user.username)
        return user.to_dict()

    def update_user(self, user_id, payload):
        data = validate(AdminUserUpdate, payload)
        user = self._get_user(user_id)
        if data.role and data.role != user.role and user.farmer is not None:
            raise Conflict('role', 'A registered farmer account must keep the farmer role')
        if data.password:
            user.set_password(data.password)
        if data.is_active is not None:
            user.is_active = data.is_active
        if data.role:
            user.role = data.role
        self.session.commit()
        return user.to_dict()

    def delete_user(self, principal, user_id, context=None):
        if principal.id == user_id:
            raise Forbidden('You cannot delete your own account')
        user = self._get_user(user_id)
        username = user.username
        self.session.delete(user)
        self.session.commit()
        self.recorder.record(principal.id, 'user_delete', 'user', user_id,
                             details={'username': username}, context=context)
        logger.info("User %s deleted by %s", user_id, principal.id)

    def set_farmer_active(self, farmer_id, payload):
        data = validate(FarmerStatusUpdate, payload)
        farmer = self.session.get(Farmer, farmer_id)
        if farmer is None:
            raise NotFound('Farmer not found')
        farmer.user.is_active = data.is_active
        self.session.commit()
        logger.info("Farmer %s active=%s", farmer_id, data.is_active)
        return {'id': farmer.id, 'is_active': data.is_active}
