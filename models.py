import sqlite3
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.orm import validates

from credentials import hash_password, verify_password

db = SQLAlchemy()

REPORT_TYPES = ('pest', 'flood', 'drought', 'mix')
REPORT_STATUSES = ('pending', 'verified', 'resolved', 'rejected')
NOTIFICATION_TYPES = ('new_report', 'status_change', 'comment', 'advisory', 'system')
SEVERITY_LEVELS = ('low', 'medium', 'high', 'critical')

# Base64 photos do not fit in MySQL TEXT
LongText = db.Text().with_variant(mysql.LONGTEXT(), 'mysql')


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None

# --- MODELS ---

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    username = db.Column(db.String(255), unique=True, nullable=False)
    email = db.Column(db.String(255), unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='farmer')
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    farmer = db.relationship('Farmer', back_populates='user', uselist=False, cascade='all, delete-orphan')
    reports = db.relationship('Report', back_populates='reporter', foreign_keys='Report.user_id', cascade='all, delete-orphan')
    verified_reports = db.relationship('Report', back_populates='verifier', foreign_keys='Report.verified_by')
    notifications = db.relationship('Notification', backref='user', cascade='all, delete-orphan')
    comments = db.relationship('ReportComment', back_populates='author', cascade='all, delete-orphan')
    # Activity logs outlive the account; the link is nulled on delete
    activity_logs = db.relationship('ActivityLog', back_populates='user')

    def set_password(self, password):
        self.password_hash = hash_password(password)

    def check_password(self, password):
        return verify_password(password, self.password_hash)

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def display_name(self):
        if self.farmer and self.farmer.full_name:
            return self.farmer.full_name
        return self.username

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at)
        }

class Farmer(db.Model):
    __tablename__ = 'farmers'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    rsbsa_id = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(255), nullable=False)
    middle_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255), nullable=False)
    tribe = db.Column(db.String(255))
    address_sitio = db.Column(db.String(255))
    address_barangay = db.Column(db.String(255))
    address_municipality = db.Column(db.String(255))
    address_province = db.Column(db.String(255))
    cellphone = db.Column(db.String(20))
    sex = db.Column(db.String(10))
    date_of_birth = db.Column(db.Date)
    civil_status = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', back_populates='farmer')
    farms = db.relationship('Farm', back_populates='farmer', cascade='all, delete-orphan', order_by='Farm.created_at')

    @property
    def full_name(self):
        parts = [self.first_name, self.last_name]
        return " ".join([p for p in parts if p]).strip()

    def to_dict(self, include_farms=False):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'rsbsa_id': self.rsbsa_id,
            'first_name': self.first_name,
            'middle_name': self.middle_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'tribe': self.tribe,
            'address_sitio': self.address_sitio,
            'address_barangay': self.address_barangay,
            'address_municipality': self.address_municipality,
            'address_province': self.address_province,
            'cellphone': self.cellphone,
            'sex': self.sex,
            'date_of_birth': _iso(self.date_of_birth),
            'civil_status': self.civil_status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
        if include_farms:
            data['farms'] = [farm.to_dict() for farm in self.farms]
        return data

class Farm(db.Model):
    __tablename__ = 'farms'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    farmer_id = db.Column(db.String(36), db.ForeignKey('farmers.id', ondelete='CASCADE'), nullable=False)
    location_sitio = db.Column(db.String(255))
    location_barangay = db.Column(db.String(255))
    location_municipality = db.Column(db.String(255))
    location_province = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    farm_size_hectares = db.Column(db.Numeric(10, 2))
    boundary_north = db.Column(db.String(255))
    boundary_south = db.Column(db.String(255))
    boundary_east = db.Column(db.String(255))
    boundary_west = db.Column(db.String(255))

    # Agronomic and insurance attributes
    planting_method = db.Column(db.String(100))
    date_of_sowing = db.Column(db.Date)
    date_of_transplanting = db.Column(db.Date)
    date_of_harvest = db.Column(db.Date)
    land_category = db.Column(db.String(100))
    soil_type = db.Column(db.String(100))
    topography = db.Column(db.String(100))
    irrigation_source = db.Column(db.String(100))
    tenural_status = db.Column(db.String(100))
    current_crop = db.Column(db.String(100))
    cover_type = db.Column(db.String(100))
    amount_cover = db.Column(db.Numeric(12, 2))
    insurance_premium = db.Column(db.Numeric(12, 2))
    cltip_sum_insured = db.Column(db.Numeric(12, 2))
    cltip_premium = db.Column(db.Numeric(12, 2))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    farmer = db.relationship('Farmer', back_populates='farms')
    # Reports keep their row when the farm goes; farm_id is nulled
    reports = db.relationship('Report', back_populates='farm')

    def to_dict(self):
        return {
            'id': self.id,
            'farmer_id': self.farmer_id,
            'location_sitio': self.location_sitio,
            'location_barangay': self.location_barangay,
            'location_municipality': self.location_municipality,
            'location_province': self.location_province,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'farm_size_hectares': _num(self.farm_size_hectares),
            'boundary_north': self.boundary_north,
            'boundary_south': self.boundary_south,
            'boundary_east': self.boundary_east,
            'boundary_west': self.boundary_west,
            'planting_method': self.planting_method,
            'date_of_sowing': _iso(self.date_of_sowing),
            'date_of_transplanting': _iso(self.date_of_transplanting),
            'date_of_harvest': _iso(self.date_of_harvest),
            'land_category': self.land_category,
            'soil_type': self.soil_type,
            'topography': self.topography,
            'irrigation_source': self.irrigation_source,
            'tenural_status': self.tenural_status,
            'current_crop': self.current_crop,
            'cover_type': self.cover_type,
            'amount_cover': _num(self.amount_cover),
            'insurance_premium': _num(self.insurance_premium),
            'cltip_sum_insured': _num(self.cltip_sum_insured),
            'cltip_premium': _num(self.cltip_premium),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }

class Report(db.Model):
    __tablename__ = 'reports'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    farm_id = db.Column(db.String(36), db.ForeignKey('farms.id', ondelete='SET NULL'))
    type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    details = db.Column(db.JSON)
    location = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    photo_base64 = db.Column(LongText)
    admin_notes = db.Column(db.Text)
    verified_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'))
    verified_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    reporter = db.relationship('User', back_populates='reports', foreign_keys=[user_id])
    verifier = db.relationship('User', back_populates='verified_reports', foreign_keys=[verified_by])
    farm = db.relationship('Farm', back_populates='reports')
    comments = db.relationship('ReportComment', back_populates='report', cascade='all, delete-orphan', order_by='ReportComment.created_at.asc()')

    def to_dict(self, include_photo=False, include_reporter=False):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'farm_id': self.farm_id,
            'type': self.type,
            'status': self.status,
            'details': self.details or {},
            'location': self.location,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'has_photo': self.photo_base64 is not None,
            'admin_notes': self.admin_notes,
            'verified_by': self.verified_by,
            'verified_at': _iso(self.verified_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
        if include_photo:
            data['photo_base64'] = self.photo_base64
        if include_reporter:
            farmer = self.reporter.farmer if self.reporter else None
            data['first_name'] = farmer.first_name if farmer else None
            data['last_name'] = farmer.last_name if farmer else None
            data['rsbsa_id'] = farmer.rsbsa_id if farmer else None
            data['cellphone'] = farmer.cellphone if farmer else None
            data['farm_barangay'] = self.farm.location_barangay if self.farm else None
        return data

class ReportComment(db.Model):
    __tablename__ = 'report_comments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    report_id = db.Column(db.String(36), db.ForeignKey('reports.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    report = db.relationship('Report', back_populates='comments')
    author = db.relationship('User', back_populates='comments')

    def to_dict(self):
        return {
            'id': self.id,
            'report_id': self.report_id,
            'user_id': self.user_id,
            'author_name': self.author.display_name if self.author else 'Unknown',
            'message': self.message,
            'is_admin': self.is_admin,
            'created_at': _iso(self.created_at)
        }

class Notification(db.Model):
    __tablename__ = 'notifications'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # NULL recipient: visible to every admin
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=True, index=True)
    type = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    reference_id = db.Column(db.String(36))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    @validates('type')
    def _check_type(self, key, value):
        if value not in NOTIFICATION_TYPES:
            raise ValueError(f'Unknown notification type: {value}')
        return value

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'is_read': self.is_read,
            'reference_id': self.reference_id,
            'created_at': _iso(self.created_at)
        }

class ActivityLog(db.Model):
    __tablename__ = 'activity_logs'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    action = db.Column(db.String(100), nullable=False)
    entity_type = db.Column(db.String(100))
    entity_id = db.Column(db.String(36))
    details = db.Column(db.JSON)
    ip_address = db.Column(db.String(50))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    user = db.relationship('User', back_populates='activity_logs')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user.display_name if self.user else None,
            'action': self.action,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'details': self.details,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'created_at': _iso(self.created_at)
        }

# --- REFERENCE DATA ---

class PestCategory(db.Model):
    __tablename__ = 'pest_categories'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    severity_level = db.Column(db.String(20), default='medium')
    affected_crops = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'severity_level': self.severity_level,
            'affected_crops': self.affected_crops,
            'is_active': self.is_active
        }

class CropType(db.Model):
    __tablename__ = 'crop_types'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    season = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'season': self.season,
            'is_active': self.is_active
        }

class Barangay(db.Model):
    __tablename__ = 'barangays'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    municipality = db.Column(db.String(255), default='Norala')
    province = db.Column(db.String(255), default='South Cotabato')
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'municipality': self.municipality,
            'province': self.province,
            'latitude': self.latitude,
            'longitude': self.longitude
        }

class SystemSetting(db.Model):
    __tablename__ = 'system_settings'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    setting_key = db.Column(db.String(255), unique=True, nullable=False)
    setting_value = db.Column(db.Text)
    description = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

class News(db.Model):
    __tablename__ = 'news'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), default='news')
    priority = db.Column(db.String(20), default='low')
    is_active = db.Column(db.Boolean, default=True)
    author_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'type': self.type,
            'priority': self.priority,
            'is_active': self.is_active,
            'author_id': self.author_id,
            'created_at': _iso(self.created_at)
        }


def page_of(query, page, limit, serialize):
    """Run ``query`` as one page; return the {items, page, limit, total, totalPages} envelope."""
    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    return {
        'items': [serialize(item) for item in pagination.items],
        'page': pagination.page,
        'limit': pagination.per_page,
        'total': pagination.total,
        'totalPages': pagination.pages
    }
