"""Reference data (barangays, pests, crops, news, settings) and the cache in front of it.

Public lists are cached for ``REFERENCE_CACHE_TTL`` seconds. Admin writes go
straight to the database and do not touch the cache, so public readers can see
stale lists until the entry expires.
"""
import logging
import threading
import time

from errors import NotFound, ValidationError
from models import (
    REPORT_STATUSES, REPORT_TYPES, SEVERITY_LEVELS,
    Barangay, CropType, News, PestCategory, SystemSetting
)
from schemas import BarangayIn, CropTypeIn, NewsIn, PestCategoryIn, validate

logger = logging.getLogger(__name__)

# Served when the tables are still empty (fresh Norala install)
DEFAULT_BARANGAYS = [
    {'id': '1', 'name': 'Poblacion', 'latitude': 6.2341, 'longitude': 124.8741},
    {'id': '2', 'name': 'San Jose', 'latitude': 6.2401, 'longitude': 124.8801},
    {'id': '3', 'name': 'Liberty', 'latitude': 6.2281, 'longitude': 124.8681},
    {'id': '4', 'name': 'Dumaguil', 'latitude': 6.2461, 'longitude': 124.8861},
    {'id': '5', 'name': 'Lapuz', 'latitude': 6.2221, 'longitude': 124.8621},
    {'id': '6', 'name': 'Benigno Aquino', 'latitude': 6.2521, 'longitude': 124.8921},
    {'id': '7', 'name': 'Esperanza', 'latitude': 6.2161, 'longitude': 124.8561},
    {'id': '8', 'name': 'Kibid', 'latitude': 6.2581, 'longitude': 124.8981},
    {'id': '9', 'name': 'Tinago', 'latitude': 6.2101, 'longitude': 124.8501},
    {'id': '10', 'name': 'Pag-asa', 'latitude': 6.2641, 'longitude': 124.9041}
]

DEFAULT_PEST_TYPES = [
    {'id': '1', 'name': 'Rice Black Bug', 'severity_level': 'high'},
    {'id': '2', 'name': 'Rice Stem Borer', 'severity_level': 'high'},
    {'id': '3', 'name': 'Brown Planthopper', 'severity_level': 'critical'},
    {'id': '4', 'name': 'Corn Borer', 'severity_level': 'medium'},
    {'id': '5', 'name': 'Aphids', 'severity_level': 'low'},
    {'id': '6', 'name': 'Army Worm', 'severity_level': 'high'}
]

DEFAULT_CROP_TYPES = [
    {'id': '1', 'name': 'Rice', 'season': 'Wet/Dry'},
    {'id': '2', 'name': 'Corn', 'season': 'Dry'},
    {'id': '3', 'name': 'Vegetables', 'season': 'Year-round'},
    {'id': '4', 'name': 'Coconut', 'season': 'Year-round'},
    {'id': '5', 'name': 'Banana', 'season': 'Year-round'}
]


class TTLCache:
    """Small in-process key/value cache with per-entry expiry.

    Expired entries are dropped on read and by a sweep that runs at most once
    every ``sweep_interval`` seconds (0 sweeps on every call).
    """

    def __init__(self, ttl=3600, sweep_interval=300, clock=time.monotonic):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self):
        return len(self._entries)

    def get(self, key, default=None):
        self._maybe_sweep()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self.clock():
                del self._entries[key]
                return default
            return value

    def set(self, key, value, ttl=None):
        expires_at = self.clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)

    def get_or_load(self, key, loader):
        missing = object()
        value = self.get(key, missing)
        if value is missing:
            value = loader()
            self.set(key, value)
        return value

    def purge_expired(self):
        now = self.clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            self._last_sweep = now
        if expired:
            logger.debug("Expired %d reference cache entries", len(expired))
        return len(expired)

    def _maybe_sweep(self):
        if self.clock() - self._last_sweep >= self.sweep_interval:
            self.purge_expired()

    def clear(self):
        with self._lock:
            self._entries.clear()


class ReferenceData:

    def __init__(self, session, cache):
        self.session = session
        self.cache = cache

    # --- Public lists ---

    def barangays(self):
        def load():
            rows = self.session.query(Barangay).order_by(Barangay.name).all()
            return [b.to_dict() for b in rows] or DEFAULT_BARANGAYS
        return self.cache.get_or_load('barangays', load)

    def pest_types(self):
        def load():
            rows = (self.session.query(PestCategory)
                    .filter(PestCategory.is_active.is_(True))
                    .order_by(PestCategory.name).all())
            return [p.to_dict() for p in rows] or DEFAULT_PEST_TYPES
        return self.cache.get_or_load('pest_types', load)

    def crop_types(self):
        def load():
            rows = (self.session.query(CropType)
                    .filter(CropType.is_active.is_(True))
                    .order_by(CropType.name).all())
            return [c.to_dict() for c in rows] or DEFAULT_CROP_TYPES
        return self.cache.get_or_load('crop_types', load)

    def news(self, limit=20):
        def load():
            rows = (self.session.query(News)
                    .filter(News.is_active.is_(True))
                    .order_by(News.created_at.desc())
                    .limit(limit).all())
            return [n.to_dict() for n in rows]
        return self.cache.get_or_load(('news', limit), load)

    def options(self):
        return {
            'barangays': self.barangays(),
            'pestTypes': self.pest_types(),
            'cropTypes': self.crop_types(),
            'reportTypes': list(REPORT_TYPES),
            'reportStatuses': list(REPORT_STATUSES),
            'severityLevels': list(SEVERITY_LEVELS)
        }

    # --- Admin CRUD ---

    def _get(self, model, item_id, label):
        item = self.session.get(model, item_id)
        if item is None:
            raise NotFound(f'{label} not found')
        return item

    def _create(self, model, schema, payload, **extra):
        data = validate(schema, payload)
        item = model(**data.model_dump(), **extra)
        self.session.add(item)
        self.session.commit()
        return item.to_dict()

    def _replace(self, model, schema, item_id, payload, label):
        data = validate(schema, payload)
        item = self._get(model, item_id, label)
        for column, value in data.model_dump().items():
            setattr(item, column, value)
        self.session.commit()
        return item.to_dict()

    def _delete(self, model, item_id, label):
        item = self._get(model, item_id, label)
        self.session.delete(item)
        self.session.commit()

    def all_pest_categories(self):
        return [p.to_dict() for p in self.session.query(PestCategory).order_by(PestCategory.name)]

    def create_pest_category(self, payload):
        return self._create(PestCategory, PestCategoryIn, payload)

    def update_pest_category(self, item_id, payload):
        return self._replace(PestCategory, PestCategoryIn, item_id, payload, 'Pest category')

    def delete_pest_category(self, item_id):
        self._delete(PestCategory, item_id, 'Pest category')

    def all_crop_types(self):
        return [c.to_dict() for c in self.session.query(CropType).order_by(CropType.name)]

    def create_crop_type(self, payload):
        return self._create(CropType, CropTypeIn, payload)

    def update_crop_type(self, item_id, payload):
        return self._replace(CropType, CropTypeIn, item_id, payload, 'Crop type')

    def delete_crop_type(self, item_id):
        self._delete(CropType, item_id, 'Crop type')

    def all_barangays(self):
        return [b.to_dict() for b in self.session.query(Barangay).order_by(Barangay.name)]

    def create_barangay(self, payload, municipality, province):
        data = validate(BarangayIn, payload)
        barangay = Barangay(
            name=data.name,
            municipality=data.municipality or municipality,
            province=data.province or province,
            latitude=data.latitude,
            longitude=data.longitude
        )
        self.session.add(barangay)
        self.session.commit()
        return barangay.to_dict()

    def create_news(self, principal, payload):
        return self._create(News, NewsIn, payload, author_id=principal.id)

    def delete_news(self, item_id):
        self._delete(News, item_id, 'News item')

    # --- Settings ---

    def settings(self):
        return {s.setting_key: s.setting_value for s in self.session.query(SystemSetting)}

    def update_settings(self, payload):
        if not isinstance(payload, dict):
            raise ValidationError.single('body', 'Request body must be a JSON object')
        errors = [{'field': key, 'message': 'must be text, a number or a boolean'}
                  for key, value in payload.items()
                  if value is not None and not isinstance(value, (str, int, float, bool))]
        if errors:
            raise ValidationError(errors)

        existing = {s.setting_key: s for s in self.session.query(SystemSetting)
                    .filter(SystemSetting.setting_key.in_(list(payload)))}
        for key, value in payload.items():
            if isinstance(value, bool):
                value = str(value).lower()
            elif value is not None:
                value = str(value)
            setting = existing.get(key)
            if setting is None:
                self.session.add(SystemSetting(setting_key=key, setting_value=value))
            else:
                setting.setting_value = value
        self.session.commit()
        logger.info("Updated settings: %s", ', '.join(sorted(payload)))
        return self.settings()
