"""Mapping of backend order JSON into what the order pages render, and back into update payloads."""
import datetime
import math
import re
from urllib.parse import quote

from constants import EDIT_PHOTO_FIELDS


def proxied(src):
    """Route a backend image through our image proxy so auth cookies are attached server-side."""
    if not src:
        return None
    return f'/api/proxy/image?src={quote(str(src), safe="")}'


def first_non_empty(*values):
    for v in values:
        if v is None:
            continue
        s = str(v).strip()
        if not s or s.lower() in ('undefined', 'null'):
            continue
        return s
    return None


def to_number(value, default=0):
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    return n if math.isfinite(n) else default


def to_date_input(value):
    """YYYY-MM-DD for a date input, '' when unparseable."""
    if not value:
        return ''
    s = str(value)
    if re.match(r'^\d{4}-\d{2}-\d{2}$', s):
        return s
    try:
        return datetime.datetime.fromisoformat(s.replace('Z', '+00:00')).date().isoformat()
    except ValueError:
        return ''


# Order list rows

def slug_of(o):
    return first_non_empty(o.get('orderId'), o.get('code'), o.get('orderCode'), o.get('order_no'),
                           o.get('orderNo'), o.get('order_id'), o.get('id'))


def _items_of(o):
    if isinstance(o.get('items'), list):
        return o['items']
    if isinstance(o.get('orderItems'), list):
        return o['orderItems']
    return []


def _name_en(value):
    return value.get('nameEn') if isinstance(value, dict) else None


def item_names_of(o):
    """First two distinct item names of an order, 'Item' when none is known."""
    names = []
    for it in _items_of(o):
        name = first_non_empty(it.get('itemName'), it.get('title'), _name_en(it.get('itemType')),
                               it.get('nameEn'), _name_en(it.get('type')),
                               it.get('type') if not isinstance(it.get('type'), dict) else None)
        if name and name not in names:
            names.append(name)
    if not names:
        items = _items_of(o)
        first = items[0] if items else {}
        return first_non_empty(o.get('itemTitle'), o.get('title'), _name_en(first.get('itemType')),
                               first.get('nameEn')) or 'Item'
    return ', '.join(names[:2])


def cloth_photo_of(o):
    items = _items_of(o)
    it = items[0] if items else None
    groups = it.get('measurementGroups') if it else None
    mg = groups[0] if isinstance(groups, list) and groups else None
    raw = ((mg or {}).get('clothPhoto') or (it or {}).get('clothPhoto') or o.get('clothPhoto')
           or o.get('thumbnail') or o.get('photoUrl'))
    return proxied(raw)


def order_row(o):
    amount = to_number(o.get('total', o.get('makingChargeTotal', o.get('grandTotal', o.get('amount', o.get('totalAmount', 0))))))
    slug = slug_of(o)
    customer = o.get('customer') if isinstance(o.get('customer'), dict) else {}
    return {
        'slug': slug,
        'href': f'/orders/{quote(slug, safe="")}' if slug else None,
        'name': o.get('customerName') or customer.get('name') or o.get('name') or '—',
        'items': item_names_of(o),
        'photo': cloth_photo_of(o),
        'avatar': customer.get('photoUrl') or o.get('customerPhotoUrl') or o.get('photoUrl'),
        'due': o.get('deliveryDate') or o.get('expectedDelivery') or o.get('dueDate') or o.get('remainingDeliveryDate') or o.get('dueOn'),
        'amount': amount,
        'status': o.get('status') or o.get('orderStatus') or o.get('stage') or '—',
        'count': o.get('itemCount') or len(_items_of(o)) or o.get('quantity') or 1,
    }


def _time_of(o):
    t = o.get('createdAt') or o.get('updatedAt') or o.get('deliveryDate') or o.get('dueOn') or 0
    if isinstance(t, (int, float)) and not isinstance(t, bool):
        return float(t)
    try:
        dt = datetime.datetime.fromisoformat(str(t).replace('Z', '+00:00'))
    except ValueError:
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp() * 1000


def _order_key(o):
    return (o.get('orderId') or o.get('id') or o.get('code')
            or f"{o.get('customerId') or ''}-{o.get('createdAt') or o.get('updatedAt') or ''}")


def recent_orders(raw, limit=5):
    """Newest first, deduplicated by order key."""
    seen = set()
    out = []
    for o in sorted(raw, key=_time_of, reverse=True):
        k = _order_key(o)
        if k in seen:
            continue
        seen.add(k)
        out.append(o)
    return out[:limit]


# Order detail

def detail_view(raw):
    d = raw.get('data', raw) if isinstance(raw, dict) else None
    if not isinstance(d, dict) or not d:
        return None

    customer = {
        'name': d.get('customerName') or '—',
        'phone': d.get('customerPhone') or '',
        'gender': d.get('customerGender') or '',
        'photo': proxied(d.get('customerPhoto')),
    }

    rows = []
    for it in d.get('items') or []:
        title = it.get('itemName') or it.get('title') or 'Item'
        groups = it.get('measurementGroups') if isinstance(it.get('measurementGroups'), list) else []
        if not groups:
            rows.append({
                'title': title,
                'amount': to_number(it.get('makingCharge')),
                'measurements': 0,
                'photo': None,
                'deliveryDate': None,
                'groupId': it.get('id'),
            })
            continue
        for mg in groups:
            mg = mg or {}
            making = mg.get('makingCharge')
            if making is None:
                making = it.get('makingCharge')
            rows.append({
                'title': title,
                'amount': to_number(making),
                'measurements': len(mg.get('measurements') or []) if isinstance(mg.get('measurements'), list) else 0,
                'photo': proxied(mg.get('clothPhoto')),
                'deliveryDate': mg.get('deliveryDate'),
                'groupId': mg.get('id', it.get('id')),
            })

    total = to_number(d.get('totalAmount'))
    paid = to_number(d.get('paidAmount'))
    due = d.get('dueAmount')
    payment = {
        'making': total,
        'advance': paid,
        'due': to_number(due) if due is not None else max(0, total - paid),
    }

    dates = [r['deliveryDate'] for r in rows if r['deliveryDate']]
    return {
        'orderId': d.get('orderId') or d.get('id'),
        'customer': customer,
        'items': rows,
        'payment': payment,
        'delivery': {'date': min(dates) if dates else None},
    }


# Measurement group editing

def find_group(d, group_id=None):
    """(parent item, group) for group_id, else the first group of the first item that has one."""
    items = d.get('items') if isinstance(d.get('items'), list) else []
    if group_id is not None and str(group_id) != '':
        for it in items:
            for g in it.get('measurementGroups') or []:
                if str(g.get('id')) == str(group_id):
                    return it, g
    for it in items:
        groups = it.get('measurementGroups') or []
        if groups:
            return it, groups[0]
    return None, None


def find_group_strict(d, group_id):
    items = d.get('items') if isinstance(d.get('items'), list) else []
    for it in items:
        for g in it.get('measurementGroups') or []:
            if str(g.get('id')) == str(group_id):
                return it, g
    return None, None


def _is_numeric_text(value):
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def normalize_measurement(m):
    raw = m.get('value')
    mtype = str(m.get('type') or 'NUMERIC').upper()

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        numeric = raw
    elif raw is not None and raw != '' and _is_numeric_text(raw):
        numeric = float(raw)
    else:
        numeric = ''

    boolean = None
    if mtype == 'BOOLEAN':
        if isinstance(m.get('booleanValue'), bool):
            boolean = m['booleanValue']
        elif isinstance(raw, bool):
            boolean = raw
        elif isinstance(raw, str) and raw.lower() in ('true', 'false'):
            boolean = raw.lower() == 'true'

    text = ''
    if mtype == 'TEXT':
        text = m.get('textValue')
        if text is None:
            text = raw if isinstance(raw, str) and not _is_numeric_text(raw) else ''

    return {
        'id': m.get('id'),
        'nsId': m.get('nsId') if m.get('nsId') is not None else m.get('id'),
        'name': m.get('nameEn') or m.get('name') or 'Measurement',
        'unit': m.get('unit'),
        'type': mtype,
        'value': numeric if mtype == 'NUMERIC' else '',
        'booleanValue': boolean,
        'textValue': text,
    }


def edit_view(d, group_id=None):
    parent, group = find_group(d, group_id)
    if not group:
        return None
    parent = parent or {}
    return {
        'orderCode': d.get('orderId') or d.get('code') or '',
        'orderDbId': d.get('id'),
        'groupId': group.get('id'),
        # catalog item id, not the order-item row id
        'itemId': parent.get('itemId'),
        'title': parent.get('itemName') or parent.get('title') or 'Item',
        'makingCharge': to_number(parent.get('makingCharge', group.get('makingCharge'))),
        'deliveryDate': to_date_input(group.get('deliveryDate') or d.get('deliveryDate') or ''),
        'specialInstruction': group.get('specialInstruction'),
        'measurements': [normalize_measurement(m) for m in group.get('measurements') or []],
        'shopId': d.get('shopId'),
        'customerName': d.get('customerName') or '',
        'customerPhone': d.get('customerPhone') or '',
        'customerGender': d.get('customerGender') or '',
        'customerPhoto': d.get('customerPhoto'),
        'paidAmount': d.get('paidAmount'),
        'trialDate': to_date_input(d.get('trialDate') or ''),
        'orderDeliveryDate': to_date_input(d.get('deliveryDate') or ''),
    }


def apply_form(vm, form):
    """Overlay submitted editor fields on the view model (a new dict)."""
    updated = dict(vm)
    if 'makingCharge' in form:
        updated['makingCharge'] = form.get('makingCharge', '').strip()
    if 'deliveryDate' in form:
        updated['deliveryDate'] = form.get('deliveryDate', '').strip()
    if 'specialInstruction' in form:
        updated['specialInstruction'] = form.get('specialInstruction', '')

    measurements = []
    for i, m in enumerate(vm.get('measurements') or []):
        m = dict(m)
        key = f'm_{i}'
        if m['type'] == 'NUMERIC':
            s = (form.get(key) or '').strip()
            m['value'] = float(s) if s and _is_numeric_text(s) else ''
        elif m['type'] == 'BOOLEAN':
            choice = form.get(key, '')
            m['booleanValue'] = True if choice == 'true' else False if choice == 'false' else None
        else:
            m['textValue'] = form.get(key, '')
        measurements.append(m)
    updated['measurements'] = measurements
    return updated


def _measurement_value(m):
    t = str(m.get('type') or '').upper()
    if t == 'NUMERIC':
        v = m.get('value')
        if v == '' or v is None:
            return None
        n = to_number(v, default=None)
        if n is None:
            return None
        return str(int(n)) if float(n).is_integer() else str(n)
    if t == 'BOOLEAN':
        b = m.get('booleanValue')
        return ('true' if b else 'false') if isinstance(b, bool) else None
    text = m.get('textValue')
    return str(text) if text and str(text).strip() else None


def to_order_measurement(m):
    ns = m.get('nsId') if m.get('nsId') is not None else m.get('id')
    return {
        'nameEn': m.get('name') or 'Measurement',
        'unit': m.get('unit'),
        'type': str(m.get('type') or '').upper(),
        'nsId': str(ns) if ns is not None else None,
        'value': _measurement_value(m),
    }


def prune(o):
    """Recursively drop None, blank strings, empty dicts and empty lists."""
    if isinstance(o, list):
        cleaned = [prune(x) for x in o]
        return [x for x in cleaned if x is not None and (not isinstance(x, (dict, list)) or len(x))]
    if isinstance(o, dict):
        out = {}
        for k, v in o.items():
            cv = prune(v)
            if cv is None:
                continue
            if isinstance(cv, str) and cv.strip() == '':
                continue
            if isinstance(cv, (dict, list)) and len(cv) == 0:
                continue
            out[k] = cv
        return out or None
    return o


def _non_empty(s):
    return s if isinstance(s, str) and s.strip() else None


def _pick(*values):
    for v in values:
        if v is not None:
            return v
    return None


def build_update_payload(vm, initial):
    """Full order body for PUT /api/orders/{id}; making charge sits on the item, not the group."""
    measurements = [to_order_measurement(m) for m in vm.get('measurements') or []]
    measurements = [m for m in measurements if m['value'] is not None]

    group_block = {
        'specialInstruction': _non_empty(vm.get('specialInstruction') or initial.get('specialInstruction')),
        'deliveryDate': _non_empty(vm.get('deliveryDate') or initial.get('deliveryDate')),
        'measurements': measurements,
    }

    making = to_number(vm.get('makingCharge'), default=None)
    order = {
        'shopId': _pick(vm.get('shopId'), initial.get('shopId')),
        'customerName': _non_empty(_pick(vm.get('customerName'), initial.get('customerName'))),
        'customerPhone': _non_empty(_pick(vm.get('customerPhone'), initial.get('customerPhone'))),
        'customerGender': _non_empty(_pick(vm.get('customerGender'), initial.get('customerGender'))),
        'customerPhoto': _non_empty(_pick(vm.get('customerPhoto') or None, initial.get('customerPhoto') or None)),
        'paidAmount': _pick(vm.get('paidAmount'), initial.get('paidAmount')),
        'trialDate': _non_empty(_pick(vm.get('trialDate'), initial.get('trialDate'))),
        'deliveryDate': _non_empty(_pick(_non_empty(vm.get('orderDeliveryDate')), _non_empty(initial.get('orderDeliveryDate')),
                                         _non_empty(vm.get('deliveryDate')), _non_empty(initial.get('deliveryDate')))),
        'items': [{
            'itemId': _pick(vm.get('itemId'), initial.get('itemId')),
            'makingCharge': making,
            'measurementGroups': [group_block],
        }],
    }
    return prune(order) or {}


def photos_view(d, group_id):
    parent, group = find_group_strict(d, group_id)
    if not group:
        return None
    parent = parent or {}
    return {
        'orderId': d.get('orderId') or d.get('id'),
        'groupId': group.get('id'),
        'itemId': parent.get('id') if parent.get('id') is not None else parent.get('itemId'),
        'title': parent.get('itemName') or parent.get('title') or 'Item',
        'photos': {kind: proxied(group.get(field)) for kind, field in EDIT_PHOTO_FIELDS.items()},
    }
