"""Request body schemas.

Every JSON body is checked here before any database access. Bodies use
camelCase keys (``rsbsaId``, ``adminNotes``); snake_case names are accepted
too. All failures are collected into one ``errors.ValidationError``.
"""
from datetime import date
from typing import Literal, Optional

from flask import current_app, has_app_context
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from errors import ValidationError

PHONE_PATTERN = r'^(09|\+639)\d{9}$'
EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'


def _in_region(value, info, axis):
    region = (info.context or {}).get('region')
    if value is None or not region:
        return value
    low, high = region['min_' + axis], region['max_' + axis]
    if not low <= value <= high:
        raise ValueError(f'must be between {low} and {high} (outside the service area)')
    return value


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True,
                              allow_inf_nan=False)

    @field_validator('*', mode='before')
    @classmethod
    def _blank_to_none(cls, value, info):
        # Forms send '' for untouched optional inputs
        if isinstance(value, str) and not value.strip() and not cls.model_fields[info.field_name].is_required():
            return None
        return value


class RegistrationRequest(RequestModel):
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    username: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=128)
    rsbsa_id: str = Field(min_length=5, max_length=255)
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    middle_name: Optional[str] = Field(None, max_length=255)
    tribe: Optional[str] = Field(None, max_length=255)
    street_sitio: Optional[str] = Field(None, max_length=255)
    barangay: Optional[str] = Field(None, max_length=255)
    municipality: Optional[str] = Field(None, max_length=255)
    province: Optional[str] = Field(None, max_length=255)
    cellphone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    sex: Optional[Literal['Male', 'Female']] = None
    dob_month: Optional[int] = Field(None, ge=1, le=12)
    dob_day: Optional[int] = Field(None, ge=1, le=31)
    dob_year: Optional[int] = Field(None, ge=1900, validate_default=True)
    civil_status: Optional[str] = Field(None, max_length=50)

    # First farm
    farm_sitio: Optional[str] = Field(None, max_length=255)
    farm_barangay: Optional[str] = Field(None, max_length=255)
    farm_municipality: Optional[str] = Field(None, max_length=255)
    farm_province: Optional[str] = Field(None, max_length=255)
    farm_latitude: Optional[float] = Field(None, ge=-90, le=90)
    farm_longitude: Optional[float] = Field(None, ge=-180, le=180)
    boundary_north: Optional[str] = Field(None, max_length=255)
    boundary_south: Optional[str] = Field(None, max_length=255)
    boundary_east: Optional[str] = Field(None, max_length=255)
    boundary_west: Optional[str] = Field(None, max_length=255)
    farm_size: Optional[float] = Field(None, gt=0)

    @field_validator('dob_year')
    @classmethod
    def _check_birth_date(cls, year, info):
        month, day = info.data.get('dob_month'), info.data.get('dob_day')
        if year is None and month is None and day is None:
            return year
        if year is None or month is None or day is None:
            raise ValueError('day, month and year of birth are all required')
        try:
            date(year, month, day)
        except ValueError:
            raise ValueError('is not a valid date') from None
        return year

    @field_validator('farm_latitude')
    @classmethod
    def _farm_lat_in_region(cls, value, info):
        return _in_region(value, info, 'lat')

    @field_validator('farm_longitude')
    @classmethod
    def _farm_lon_in_region(cls, value, info):
        return _in_region(value, info, 'lon')

    @property
    def date_of_birth(self):
        if self.dob_year is None:
            return None
        return date(self.dob_year, self.dob_month, self.dob_day)


class LoginRequest(RequestModel):
    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class FarmCreate(RequestModel):
    location_sitio: Optional[str] = Field(None, max_length=255)
    location_barangay: Optional[str] = Field(None, max_length=255)
    location_municipality: Optional[str] = Field(None, max_length=255)
    location_province: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    farm_size_hectares: Optional[float] = Field(None, gt=0)
    boundary_north: Optional[str] = Field(None, max_length=255)
    boundary_south: Optional[str] = Field(None, max_length=255)
    boundary_east: Optional[str] = Field(None, max_length=255)
    boundary_west: Optional[str] = Field(None, max_length=255)
    planting_method: Optional[str] = Field(None, max_length=100)
    date_of_sowing: Optional[date] = None
    date_of_transplanting: Optional[date] = None
    date_of_harvest: Optional[date] = None
    land_category: Optional[str] = Field(None, max_length=100)
    soil_type: Optional[str] = Field(None, max_length=100)
    topography: Optional[str] = Field(None, max_length=100)
    irrigation_source: Optional[str] = Field(None, max_length=100)
    tenural_status: Optional[str] = Field(None, max_length=100)
    current_crop: Optional[str] = Field(None, max_length=100)
    cover_type: Optional[str] = Field(None, max_length=100)
    amount_cover: Optional[float] = Field(None, ge=0)
    insurance_premium: Optional[float] = Field(None, ge=0)
    cltip_sum_insured: Optional[float] = Field(None, ge=0)
    cltip_premium: Optional[float] = Field(None, ge=0)

    @field_validator('latitude')
    @classmethod
    def _lat_in_region(cls, value, info):
        return _in_region(value, info, 'lat')

    @field_validator('longitude')
    @classmethod
    def _lon_in_region(cls, value, info):
        return _in_region(value, info, 'lon')


class FarmPatch(FarmCreate):
    """Every farm column is optional; only the keys present in the body are applied."""
    # Short name used by the registration form
    farm_size: Optional[float] = Field(None, gt=0)


class FarmerPatch(RequestModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=255)
    middle_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, min_length=1, max_length=255)
    tribe: Optional[str] = Field(None, max_length=255)
    address_sitio: Optional[str] = Field(None, max_length=255)
    address_barangay: Optional[str] = Field(None, max_length=255)
    address_municipality: Optional[str] = Field(None, max_length=255)
    address_province: Optional[str] = Field(None, max_length=255)
    cellphone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    sex: Optional[Literal['Male', 'Female']] = None
    date_of_birth: Optional[date] = None
    civil_status: Optional[str] = Field(None, max_length=50)

    @field_validator('first_name', 'last_name')
    @classmethod
    def _name_required(cls, value):
        if value is None:
            raise ValueError('is required')
        return value


class ReportDetails(RequestModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              str_strip_whitespace=True, extra='allow', coerce_numbers_to_str=True,
                              allow_inf_nan=False)

    description: Optional[str] = Field(None, max_length=5000)
    damage_level: Optional[str] = Field(None, max_length=100)
    crop_type: Optional[str] = Field(None, max_length=100)
    pest_type: Optional[str] = Field(None, max_length=100)
    severity: Optional[str] = Field(None, max_length=50)
    affected_area: Optional[str] = Field(None, max_length=50)


class ReportCreate(RequestModel):
    type: Literal['pest', 'flood', 'drought', 'mix']
    details: Optional[ReportDetails] = None
    location: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    photo_base64: Optional[str] = None
    farm_id: Optional[str] = Field(None, max_length=36)

    @field_validator('latitude')
    @classmethod
    def _lat_in_region(cls, value, info):
        return _in_region(value, info, 'lat')

    @field_validator('longitude')
    @classmethod
    def _lon_in_region(cls, value, info):
        return _in_region(value, info, 'lon')


class StatusUpdate(RequestModel):
    status: Literal['pending', 'verified', 'resolved', 'rejected']
    admin_notes: Optional[str] = Field(None, max_length=5000)


class CommentCreate(RequestModel):
    message: str = Field(min_length=1, max_length=2000)


class AdminUserCreate(RequestModel):
    username: str = Field(min_length=3, max_length=255)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6, max_length=128)
    role: Literal['farmer', 'admin'] = 'admin'


class AdminUserUpdate(RequestModel):
    is_active: Optional[bool] = None
    role: Optional[Literal['farmer', 'admin']] = None
    password: Optional[str] = Field(None, min_length=6, max_length=128)


class FarmerStatusUpdate(RequestModel):
    is_active: bool


class PestCategoryIn(RequestModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    severity_level: Literal['low', 'medium', 'high', 'critical'] = 'medium'
    affected_crops: Optional[str] = None
    is_active: bool = True


class CropTypeIn(RequestModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    season: Optional[str] = Field(None, max_length=100)
    is_active: bool = True


class BarangayIn(RequestModel):
    name: str = Field(min_length=1, max_length=255)
    municipality: Optional[str] = Field(None, max_length=255)
    province: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class NewsIn(RequestModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    type: Literal['news', 'advisory', 'alert'] = 'news'
    priority: Literal['low', 'medium', 'high'] = 'low'


def _field_name(loc):
    return '.'.join(str(part) for part in loc) or 'body'


def _clean_message(message):
    prefix = 'Value error, '
    return message[len(prefix):] if message.startswith(prefix) else message


def validate(model_cls, data):
    """Parse ``data`` into ``model_cls`` or raise ValidationError with every bad field."""
    if not isinstance(data, dict):
        raise ValidationError.single('body', 'Request body must be a JSON object')
    context = {'region': current_app.config.get('SERVICE_REGION')} if has_app_context() else {}
    try:
        return model_cls.model_validate(data, context=context)
    except SchemaError as e:
        fields = [{'field': _field_name(err['loc']), 'message': _clean_message(err['msg'])} for err in e.errors()]
        raise ValidationError(fields) from None
