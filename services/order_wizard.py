"""Working state of the multi-step "create order" wizard.

The state lives in the Flask session under a versioned key as JSON text.
It is loaded once per request (merged over the defaults so newly added
fields always exist), changed through small patch operations, and written
back after every change.

The "working item" fields describe the garment currently being edited.
Committing it appends a copy to ``orderItems`` and resets those fields.
"""
import copy
import json
import math

from constants import MEASUREMENT_OPTIONS, PHOTO_IMAGE_NAMES

# Bump when the persisted shape changes
STORAGE_KEY = 'create-order:v4'
LAST_ORDER_KEY = 'create-order:last'
ORDER_SEQ_PREFIX = 'order-seq:'

DEFAULT_STATE = {
    'phone': '',
    'name': '',
    'gender': 'MALE',

    'itemId': None,
    'itemType': None,
    'itemParameters': [],

    'measurementOption': 'NEW',
    'measurementValues': {},
    'makingCharge': '',
    'urgentDelivery': False,
    'deliveryDate': None,

    'photos': {},
    'photoUrls': {},

    'orderItems': [],

    'remainingDeliveryDate': None,
}

WORKING_FIELDS = (
    'itemId', 'itemType', 'itemParameters', 'measurementOption', 'measurementValues',
    'makingCharge', 'urgentDelivery', 'deliveryDate', 'photos', 'photoUrls',
)

EXTRAS_FIELDS = ('makingCharge', 'urgentDelivery', 'deliveryDate', 'remainingDeliveryDate')

# Parameter fields kept in the session; suggestiveValues are looked up from the catalog
PARAM_FIELDS = ('id', 'nameEn', 'nameBn', 'unit', 'type', 'nsId')


def _defaults():
    return copy.deepcopy(DEFAULT_STATE)


def slim_parameters(params):
    return [{k: p.get(k) for k in PARAM_FIELDS} for p in (params or []) if isinstance(p, dict)]


def parse_charge(value):
    """Making charge as a float, or NaN when blank or not numeric."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if value is None or str(value).strip() == '':
        return math.nan
    try:
        return float(str(value).strip())
    except ValueError:
        return math.nan


def charge_or_zero(value):
    n = parse_charge(value)
    return n if math.isfinite(n) else 0


class CreateOrderStore:
    """Patch-style accessor around the wizard state stored in ``storage`` (a session mapping)."""

    def __init__(self, storage):
        self.storage = storage
        self.state = self._load()

    def _load(self):
        raw = self.storage.get(STORAGE_KEY)
        try:
            parsed = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            return _defaults()
        if not isinstance(parsed, dict):
            return _defaults()
        state = _defaults()
        state.update(parsed)
        return state

    def _persist(self):
        self.storage[STORAGE_KEY] = json.dumps(self.state)

    def set_state(self, **patch):
        self.state.update(patch)
        self._persist()

    def reset(self):
        self.state = _defaults()
        self._persist()

    def select_item(self, id=None, name=None, params=None):
        s = self.state
        s['itemId'] = id if id is not None else s.get('itemId')
        s['itemType'] = name if name is not None else s.get('itemType')
        s['itemParameters'] = slim_parameters(params) if params is not None else s.get('itemParameters')
        self._persist()

    def set_measurement_option(self, option):
        if option not in MEASUREMENT_OPTIONS:
            raise ValueError(f'Unknown measurement option: {option}')
        self.state['measurementOption'] = option
        self._persist()

    def set_measurement_values(self, patch):
        values = dict(self.state.get('measurementValues') or {})
        values.update({str(k): v for k, v in patch.items()})
        self.state['measurementValues'] = values
        self._persist()

    def set_photo(self, key, preview=None):
        self._set_in('photos', key, preview)
        self._persist()

    def set_photo_url(self, key, url=None):
        self._set_in('photoUrls', key, url)
        self._persist()

    def set_photo_pair(self, key, preview=None, url=None):
        self._set_in('photos', key, preview)
        self._set_in('photoUrls', key, url)
        self._persist()

    def _set_in(self, field, key, value):
        if key not in PHOTO_IMAGE_NAMES:
            raise ValueError(f'Unknown photo key: {key}')
        mapping = dict(self.state.get(field) or {})
        if value is None:
            mapping.pop(key, None)
        else:
            mapping[key] = value
        self.state[field] = mapping

    def clear_photos(self):
        self.state['photos'] = {}
        self.state['photoUrls'] = {}
        self._persist()

    def set_extras(self, **patch):
        unknown = set(patch) - set(EXTRAS_FIELDS)
        if unknown:
            raise ValueError(f'Not an extras field: {", ".join(sorted(unknown))}')
        self.state.update(patch)
        self._persist()

    def _clear_working_fields(self):
        for field in WORKING_FIELDS:
            self.state[field] = copy.deepcopy(DEFAULT_STATE[field])

    def add_current_item(self):
        """Commit the working item. Returns (ok, reason); the state is untouched on failure."""
        s = self.state
        if not s.get('itemId'):
            return False, 'No item selected'
        making = parse_charge(s.get('makingCharge'))
        if not math.isfinite(making):
            return False, 'Invalid making charge'

        new_item = {
            'itemId': s.get('itemId'),
            'itemType': s.get('itemType'),
            'itemParameters': s.get('itemParameters') or [],
            'measurementOption': s.get('measurementOption'),
            'measurementValues': s.get('measurementValues') or {},
            'makingCharge': making,
            'urgentDelivery': bool(s.get('urgentDelivery')),
            'deliveryDate': s.get('deliveryDate') or None,
            'photos': s.get('photos') or {},
            'photoUrls': s.get('photoUrls') or {},
        }
        items = list(s.get('orderItems') or [])
        items.append(new_item)
        self._clear_working_fields()
        s['orderItems'] = items
        self._persist()
        return True, None

    def commit_working_if_any(self):
        if not self.state.get('itemId'):
            return True, None
        return self.add_current_item()

    def start_new_item(self):
        self._clear_working_fields()
        self._persist()

    def edit_item(self, index):
        """Move a committed item back into the working fields and drop it from the list."""
        items = list(self.state.get('orderItems') or [])
        if index < 0 or index >= len(items):
            return False
        item = items.pop(index)
        self.state.update({
            'itemId': item.get('itemId'),
            'itemType': item.get('itemType'),
            'itemParameters': item.get('itemParameters') or [],
            'measurementOption': item.get('measurementOption') or 'NEW',
            'measurementValues': item.get('measurementValues') or {},
            'makingCharge': charge_or_zero(item.get('makingCharge')),
            'urgentDelivery': bool(item.get('urgentDelivery')),
            'deliveryDate': item.get('deliveryDate'),
            'photos': item.get('photos') or {},
            'photoUrls': item.get('photoUrls') or {},
            'orderItems': items,
        })
        self._persist()
        return True

    # Derived views

    @property
    def has_customer(self):
        return bool(self.state.get('phone')) and bool(self.state.get('name'))

    def working_item(self):
        s = self.state
        if not s.get('itemId'):
            return None
        return {
            'itemId': s['itemId'],
            'itemType': s.get('itemType'),
            'itemParameters': s.get('itemParameters') or [],
            'measurementOption': s.get('measurementOption'),
            'measurementValues': s.get('measurementValues') or {},
            'makingCharge': charge_or_zero(s.get('makingCharge')),
            'urgentDelivery': bool(s.get('urgentDelivery')),
            'deliveryDate': s.get('deliveryDate'),
            'photos': s.get('photos') or {},
            'photoUrls': s.get('photoUrls') or {},
        }

    def all_items(self):
        items = list(self.state.get('orderItems') or [])
        working = self.working_item()
        if working:
            items.append(working)
        return items

    def total(self):
        return sum(charge_or_zero(it.get('makingCharge')) for it in self.all_items())

    def non_urgent_count(self):
        return len([it for it in self.all_items() if not it.get('urgentDelivery')])

    def qs(self):
        shop_id = self.state.get('shopId')
        return f'?shopId={shop_id}' if shop_id else ''

    # Order submission

    def photo_url_for(self, item, key):
        return (item.get('photoUrls') or {}).get(key) or (self.state.get('photoUrls') or {}).get(key)

    def validate_before_send(self):
        for item in self.all_items():
            if not self.photo_url_for(item, 'orderCloth'):
                return 'Cloth image is required. Please upload it from the Photo step.'
        return None

    def build_api_payload(self, advance):
        s = self.state
        remaining = s.get('remainingDeliveryDate')
        items = []
        for it in self.all_items():
            values = it.get('measurementValues') or {}
            measurements = []
            for p in it.get('itemParameters') or []:
                v = values.get(str(p.get('nsId')))
                if v is None:
                    v = values.get(str(p.get('id')))
                measurements.append({
                    'nameEn': p.get('nameEn'),
                    'nameBn': p.get('nameBn'),
                    'unit': p.get('unit'),
                    'type': p.get('type'),
                    'nsId': p.get('nsId'),
                    'value': _stringify(v),
                })

            delivery = it.get('deliveryDate') if it.get('urgentDelivery') else remaining
            group = {
                'clothPhoto': self.photo_url_for(it, 'orderCloth'),
                'patternClothPhoto': self.photo_url_for(it, 'patternPhoto'),
                'measurementClothPhoto': self.photo_url_for(it, 'measurementCloth'),
                'designDrawingPhoto': self.photo_url_for(it, 'designSketch') or self.photo_url_for(it, 'designPhoto'),
                'deliveryDate': delivery,
                'makingCharge': charge_or_zero(it.get('makingCharge')),
                'measurements': measurements,
            }
            items.append({
                'itemId': it.get('itemId'),
                'measurementGroups': [{k: v for k, v in group.items() if v is not None and v != ''}],
            })

        payload = {
            'shopId': s.get('shopId') or 1,
            'customerName': s.get('name'),
            'customerPhone': s.get('phone'),
            'customerGender': s.get('gender'),
            'paidAmount': advance,
            'deliveryDate': remaining,
            'items': items,
        }
        return {k: v for k, v in payload.items() if v is not None}


def _stringify(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_advance(raw):
    """Advance from the query string: max(0, number), or 0 when not numeric."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(value):
        return 0
    value = max(0.0, value)
    return int(value) if value.is_integer() else value


def purge_create_order_cache(storage):
    """Drop every create-order key (wizard state, last order) from the session."""
    for key in list(storage.keys()):
        if key.startswith('create-order:') or key == 'create-order':
            storage.pop(key, None)


def next_order_seq(storage, ymd):
    key = f'{ORDER_SEQ_PREFIX}{ymd}'
    seq = (storage.get(key) or 0) + 1
    storage[key] = seq
    return seq


def fallback_order_id(storage, shop_id, ymd):
    seq = next_order_seq(storage, ymd)
    return f'{shop_id}-{ymd}-{seq:04d}'
