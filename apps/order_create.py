"""Create-order wizard Blueprint.

Steps: customer -> items -> measurements -> photos -> extras -> summary
-> confirm -> success. Working state is kept by CreateOrderStore in the
Flask session; every step reads it, checks its guard, and writes back.
"""
import base64
import binascii
import json
import math
import re
import time
from urllib.parse import quote

from flask import (
    Blueprint, render_template, request, redirect, url_for, session, current_app, make_response,
)

from constants import PHOTO_IMAGE_NAMES, PHOTO_LABELS, MEASUREMENT_OPTIONS, QR_FALLBACK_URL
from services.backend_client import (
    get_backend, build_page_headers, read_json, unwrap_data, BackendError,
)
from services.order_view import proxied, to_number
from services.order_wizard import (
    CreateOrderStore, LAST_ORDER_KEY, parse_charge, parse_advance, purge_create_order_cache,
    fallback_order_id,
)
from services.request_utils import with_query, current_path, today_compact, today_iso, to_int

order_create_bp = Blueprint('order_create', __name__, url_prefix='/orders/create')

QR_MAX_ATTEMPTS = 4
QR_FIRST_DELAY = 0.5

# Suggestion chips when the catalog has no suggestiveValues (inches)
SIZES_STD = ['28', '30', '32', '34', '36', '38', '40', '42', '44']
LENGTH_STD = ['38', '40', '42', '44']
CHEST_STD = ['32', '34', '36', '38', '40', '42', '44']
INCH_HINTS = [
    (('waist', 'hip', 'thigh', 'knee'), SIZES_STD),
    (('length',), LENGTH_STD),
    (('chest', 'bust'), CHEST_STD),
    (('neck',), ['14', '14.5', '15', '15.5', '16', '16.5', '17']),
    (('sleeve', 'arm'), ['24', '25', '26', '27', '28', '29']),
    (('shoulder',), ['16', '17', '18', '19', '20']),
    (('cuff',), ['7', '7.5', '8', '8.5', '9']),
]


def get_store():
    return CreateOrderStore(session)


def step_url(step, store, **params):
    return with_query(url_for(f'order_create.{step}'), shopId=store.state.get('shopId'), **params)


def guard(store, need_item=False, need_params=False, need_items=False):
    """Redirect target when a step's prerequisites are missing, else None."""
    if not store.has_customer:
        return step_url('customer', store)
    if need_item and not store.state.get('itemId'):
        return step_url('items', store)
    if need_params and not store.state.get('itemParameters'):
        return step_url('items', store)
    if need_items and not store.all_items():
        return step_url('items', store)
    return None


def fetch_catalog():
    """Item catalog from /api/items; any failure gives an empty list."""
    try:
        resp = get_backend().request('GET', '/api/items', headers=build_page_headers(request.cookies))
    except BackendError:
        return []
    if not resp.ok:
        current_app.logger.warning(f"[CREATE] catalog fetch failed ({resp.status_code})")
        return []
    payload = read_json(resp)
    data = payload.get('data') if isinstance(payload, dict) else None
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get('content'), list):
        return data['content']
    return []


def find_catalog_item(catalog, item_id):
    for item in catalog:
        if str(item.get('id')) == str(item_id):
            return item
    return None


def suggestions_for(param):
    values = param.get('suggestiveValues')
    if isinstance(values, list) and values:
        return [str(v) for v in values]
    if (param.get('type') or 'NUMERIC').upper() != 'NUMERIC':
        return []
    name = (param.get('nameEn') or '').lower()
    if (param.get('unit') or '').lower() == 'inch':
        for needles, values in INCH_HINTS:
            if any(n in name for n in needles):
                return values
    return SIZES_STD


def parse_numeric(raw):
    s = (raw or '').strip()
    if not s:
        return ''
    try:
        n = float(s)
    except ValueError:
        return ''
    if not math.isfinite(n):
        return ''
    return int(n) if n.is_integer() else n


# Step 1: customer

@order_create_bp.route('', methods=['GET', 'POST'])
def customer():
    store = get_store()
    shop_id = request.args.get('shopId')
    if shop_id and to_int(shop_id, None) is not None and to_int(shop_id, None) != store.state.get('shopId'):
        store.set_state(shopId=to_int(shop_id, None))

    error = None
    form = {'phone': store.state.get('phone'), 'name': store.state.get('name'),
            'gender': store.state.get('gender')}
    if request.method == 'POST':
        form = {
            'phone': request.form.get('phone', '').strip(),
            'name': request.form.get('name', '').strip(),
            'gender': request.form.get('gender') or 'MALE',
        }
        if not form['phone']:
            error = 'Phone number is required'
        elif not form['name']:
            error = 'Customer name is required'
        else:
            store.set_state(**form)
            return redirect(step_url('items', store))
    return render_template('create/customer.html', form=form, error=error, store=store)


# Step 2: item and measurement option

@order_create_bp.route('/items', methods=['GET', 'POST'])
def items():
    store = get_store()
    target = guard(store)
    if target:
        return redirect(target)

    catalog = fetch_catalog()
    error = None
    if request.method == 'POST':
        option = request.form.get('measurementOption') or store.state.get('measurementOption')
        if option in MEASUREMENT_OPTIONS:
            store.set_measurement_option(option)
        item = find_catalog_item(catalog, request.form.get('itemId'))
        if item is None:
            error = 'Please select an item'
        else:
            if str(item.get('id')) != str(store.state.get('itemId')):
                store.set_state(measurementValues={})
            store.select_item(id=item.get('id'), name=item.get('nameEn'), params=item.get('parameters') or [])
            return redirect(step_url('measurements', store))
    return render_template('create/items.html', catalog=catalog, store=store, error=error)


# Step 3: measurements

@order_create_bp.route('/measurements', methods=['GET', 'POST'])
def measurements():
    store = get_store()
    target = guard(store, need_item=True, need_params=True)
    if target:
        return redirect(target)

    if request.method == 'POST':
        patch = {}
        for p in store.state['itemParameters']:
            field = f"m_{p.get('id')}"
            kind = (p.get('type') or 'NUMERIC').upper()
            if kind == 'BOOLEAN':
                patch[p.get('id')] = field in request.form
            elif kind == 'TEXT':
                patch[p.get('id')] = request.form.get(field, '')
            else:
                patch[p.get('id')] = parse_numeric(request.form.get(field))
        store.set_measurement_values(patch)
        return redirect(step_url('photos', store))

    # suggestiveValues are not kept in the session, so look them up again
    full = find_catalog_item(fetch_catalog(), store.state['itemId']) or {}
    by_id = {str(p.get('id')): p for p in full.get('parameters') or []}
    params = []
    for p in store.state['itemParameters']:
        merged = dict(p)
        merged['suggestiveValues'] = (by_id.get(str(p.get('id'))) or {}).get('suggestiveValues')
        merged['suggestions'] = suggestions_for(merged)
        merged['value'] = (store.state.get('measurementValues') or {}).get(str(p.get('id')), '')
        params.append(merged)
    return render_template('create/measurements.html', params=params, store=store)


# Step 4: photos

def upload_base64(file, image_name):
    """POST the file as base64 to the backend; returns the stored image URL or raises ValueError."""
    headers = build_page_headers(request.cookies)
    if not headers.get('Authorization'):
        raise ValueError('Your session expired. Please log in again.')
    headers['Content-Type'] = 'application/json'

    photo = base64.b64encode(file.read()).decode('ascii')
    resp = get_backend().request('POST', '/api/photos/upload-base64', headers=headers,
                                 json_body={'photo': photo, 'imageName': image_name})
    if resp.status_code == 401:
        raise ValueError('Unauthorized. Please login again.')
    if not resp.ok:
        raise ValueError(resp.text or f'Upload failed ({resp.status_code})')

    body = read_json(resp) or {}
    data = body.get('data') if isinstance(body.get('data'), dict) else {}
    url = (data.get('url') or data.get('imageUrl') or body.get('imageUrl') or body.get('url')
           or body.get('path') or body.get('fileUrl'))
    if not url:
        raise ValueError('Upload succeeded but response had no image URL')
    return str(url)


@order_create_bp.route('/photos', methods=['GET', 'POST'])
def photos():
    store = get_store()
    target = guard(store, need_item=True)
    if target:
        return redirect(target)

    error = None
    if request.method == 'POST':
        action = request.form.get('action', 'next')
        key = request.form.get('key', '')
        if action == 'next':
            if not (store.state.get('photoUrls') or {}).get('orderCloth'):
                error = 'Order Cloth Photo is required'
            else:
                return redirect(step_url('extras', store))
        elif key not in PHOTO_IMAGE_NAMES:
            error = 'Unknown photo slot'
        elif action == 'remove':
            store.set_photo_pair(key, None, None)
        else:
            file = request.files.get('file')
            if not file or not file.filename:
                error = 'Please choose a photo to upload.'
            else:
                try:
                    url = upload_base64(file, PHOTO_IMAGE_NAMES[key])
                except (ValueError, BackendError) as e:
                    error = getattr(e, 'message', None) or str(e)
                    current_app.logger.warning(f"[CREATE] photo upload {key} failed: {error}")
                else:
                    store.set_photo_pair(key, proxied(url), url)
    return render_template('create/photos.html', store=store, error=error, labels=PHOTO_LABELS,
                           previews=store.state.get('photos') or {})


# Step 5: making charge and delivery

@order_create_bp.route('/extras', methods=['GET', 'POST'])
def extras():
    store = get_store()
    target = guard(store, need_item=True)
    if target:
        return redirect(target)

    error = None
    making_text = store.state.get('makingCharge')
    making_text = '' if making_text in ('', None) else str(making_text)
    if request.method == 'POST':
        making_text = request.form.get('makingCharge', '').strip()
        urgent = request.form.get('urgentDelivery') in ('1', 'true', 'on')
        delivery = request.form.get('deliveryDate') or None
        patch = {'urgentDelivery': urgent, 'deliveryDate': delivery if urgent else None}
        charge = parse_charge(making_text)
        if making_text == '' or math.isfinite(charge):
            patch['makingCharge'] = '' if making_text == '' else charge
        store.set_extras(**patch)

        if not making_text:
            error = 'Making charge is required'
        elif urgent and not delivery:
            error = 'Please select a delivery date'
        else:
            return redirect(step_url('summary', store))
    return render_template('create/extras.html', store=store, error=error, making_text=making_text,
                           min_date=today_iso())


# Step 6: summary

@order_create_bp.route('/summary', methods=['GET', 'POST'])
def summary():
    store = get_store()
    target = guard(store, need_items=True)
    if target:
        return redirect(target)

    error = None
    advance_text = request.args.get('advance', '')
    if request.method == 'POST':
        action = request.form.get('action', 'continue')
        if action == 'add':
            ok, reason = store.commit_working_if_any()
            if ok:
                return redirect(step_url('items', store))
            error = reason
        elif action == 'edit':
            committed = store.state.get('orderItems') or []
            index = to_int(request.form.get('index'), -1)
            if index < len(committed):
                store.edit_item(index)
            return redirect(step_url('extras', store))
        else:
            advance_text = request.form.get('advance', '').strip()
            store.set_extras(remainingDeliveryDate=request.form.get('remainingDeliveryDate') or None)
            if store.non_urgent_count() > 0 and not store.state.get('remainingDeliveryDate'):
                error = 'Please pick a delivery date for non-urgent items'
            elif not advance_text:
                error = 'Advance payment is required'
            else:
                ok, reason = store.commit_working_if_any()
                if ok:
                    return redirect(step_url('confirm', store, advance=advance_text))
                error = reason
    return render_template('create/summary.html', store=store, error=error, advance_text=advance_text,
                           items=store.all_items(), total=store.total(),
                           committed_count=len(store.state.get('orderItems') or []),
                           min_date=today_iso())


# Step 7: confirm and place the order

@order_create_bp.route('/confirm', methods=['GET', 'POST'])
def confirm():
    store = get_store()
    target = guard(store, need_items=True)
    if target:
        return redirect(target)

    advance = parse_advance(request.args.get('advance'))
    total = store.total()
    due = max(total - advance, 0)
    error = None

    if request.method == 'POST':
        error = store.validate_before_send()
        if not error:
            headers = build_page_headers(request.cookies)
            if not headers.get('Authorization'):
                return redirect(url_for('auth.login', next=current_path(request)))
            headers['Content-Type'] = 'application/json'
            payload = store.build_api_payload(advance)
            try:
                resp = get_backend().request('POST', '/api/orders', headers=headers,
                                             data=json.dumps(payload).encode('utf-8'))
            except BackendError as e:
                resp, error = None, e.message
            if resp is not None:
                if resp.status_code == 401:
                    return redirect(url_for('auth.login', next=current_path(request)))
                if not resp.ok:
                    error = resp.text or f'Request failed with {resp.status_code}'
                else:
                    return _after_order_placed(store, read_json(resp))
        current_app.logger.warning(f"[CREATE] order submit failed: {error}")

    return render_template('create/confirm.html', store=store, error=error, items=store.all_items(),
                           total=total, advance=advance, due=due)


def _after_order_placed(store, body):
    data = unwrap_data(body) if body is not None else {}
    if not isinstance(data, dict):
        data = {}
    session[LAST_ORDER_KEY] = json.dumps(data)

    shop_id = store.state.get('shopId') or 1
    order_id = data.get('orderId') or data.get('code') or data.get('number')
    if not order_id:
        order_id = fallback_order_id(session, shop_id, today_compact())
    current_app.logger.info(f"[CREATE] order placed {order_id} (id={data.get('id')})")
    return redirect(with_query(url_for('order_create.success'), shopId=store.state.get('shopId'),
                               orderId=str(order_id), id=data.get('id')))


# Step 8: success / receipt

def normalize_iso(value):
    if not value:
        return ''
    s = str(value)
    if re.match(r'^\d{8}$', s):
        return f'{s[:4]}-{s[4:6]}-{s[6:]}'
    return s


@order_create_bp.route('/success')
def success():
    try:
        last = json.loads(session.get(LAST_ORDER_KEY) or 'null')
    except ValueError:
        last = None
    last = last if isinstance(last, dict) else {}

    order_id = request.args.get('orderId')
    if not order_id:
        shop = to_int(request.args.get('shopId'), 1) or 1
        order_id = fallback_order_id(session, shop, today_compact())

    total = to_number(last.get('totalAmount'))
    paid = to_number(last.get('paidAmount'))
    due = last.get('dueAmount') if last.get('dueAmount') is not None else max(total - paid, 0)
    items = last.get('items') if isinstance(last.get('items'), list) and last.get('items') else [
        {'itemName': 'Item', 'count': 1}]
    receipt = {
        'orderId': order_id,
        'shopName': last.get('shopName') or '',
        'orderDate': normalize_iso(last.get('orderDate')) or today_iso(),
        'deliveryDate': normalize_iso(last.get('deliveryDate')) or '—',
        'customerName': last.get('customerName') or '—',
        'totalAmount': total,
        'paidAmount': paid,
        'dueAmount': due,
        'items': items,
        'totalUnits': sum(to_int(it.get('count'), 0) for it in items) or 1,
    }
    db_id = request.args.get('id')
    qr_url = (with_query(url_for('order_create.success_qr'), id=db_id, orderId=order_id) if db_id
              else QR_FALLBACK_URL.format(data=quote(str(order_id), safe='')))
    return render_template('create/success.html', receipt=receipt, qr_url=qr_url)


BASE64_RE = re.compile(r'[A-Za-z0-9+/=\s]+')
# shorter values with a slash are treated as paths
BASE64_MIN_LENGTH = 64


def looks_like_base64(raw):
    if not BASE64_RE.fullmatch(raw):
        return False
    return '/' not in raw or len(raw) >= BASE64_MIN_LENGTH


def _decode_qr(resp):
    """Turn a qrcode response into a Flask response; ValueError when unusable."""
    ctype = resp.headers.get('Content-Type') or ''
    if 'application/json' in ctype:
        body = read_json(resp) or {}
        data = body.get('data') if isinstance(body.get('data'), dict) else {}
        raw = body.get('qrCode') or data.get('qrCode') or body.get('imageUrl') or body.get('url') or body.get('base64')
        if not raw:
            raise ValueError('QR response missing qrCode')
        raw = str(raw)
        if raw.startswith('data:image'):
            header, _, b64 = raw.partition(',')
            mime = header[5:].split(';')[0] or 'image/png'
            return _image_response(_b64(b64), mime)
        if re.match(r'^https?://', raw):
            return redirect(proxied(raw))
        if looks_like_base64(raw):
            return _image_response(_b64(raw), 'image/png')
        if '/' in raw:
            return redirect(proxied(get_backend().url(raw)))
        return _image_response(_b64(raw), 'image/png')
    if ctype.startswith('image/'):
        return _image_response(resp.content, ctype)
    raise ValueError('Unsupported QR response type')


def _b64(text):
    try:
        return base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f'Bad QR image data: {e}') from e


def _image_response(content, mime):
    resp = make_response(content)
    resp.headers['Content-Type'] = mime
    resp.headers['Cache-Control'] = 'private, max-age=300'
    return resp


def fetch_qr(order_db_id, headers, sleep=None):
    """Ask the backend for the order's QR code, retrying with a doubling delay.

    Odd attempts use GET and even ones POST. Returns a Flask response, or
    None when every attempt failed.
    """
    sleep = sleep or time.sleep
    backend = get_backend()
    delay = QR_FIRST_DELAY
    for attempt in range(1, QR_MAX_ATTEMPTS + 1):
        method = 'GET' if attempt % 2 == 1 else 'POST'
        try:
            resp = backend.request(method, f'/api/orders/{quote(str(order_db_id), safe="")}/qrcode',
                                   headers=headers, data=b'' if method == 'POST' else None)
            if not resp.ok:
                raise ValueError(resp.text or f'QR request failed ({resp.status_code})')
            return _decode_qr(resp)
        except (ValueError, BackendError) as e:
            current_app.logger.info(f"[CREATE] QR attempt {attempt}/{QR_MAX_ATTEMPTS} failed: {e}")
            if attempt < QR_MAX_ATTEMPTS:
                sleep(delay)
                delay *= 2
    return None


@order_create_bp.route('/success/qr')
def success_qr():
    order_db_id = request.args.get('id')
    order_id = request.args.get('orderId') or order_db_id or ''
    fallback = QR_FALLBACK_URL.format(data=quote(str(order_id), safe=''))
    headers = build_page_headers(request.cookies)
    if not order_db_id or not headers.get('Authorization'):
        return redirect(fallback)
    headers['Accept'] = 'application/json,image/*'
    return fetch_qr(order_db_id, headers) or redirect(fallback)


@order_create_bp.route('/success/home', methods=['POST'])
def success_home():
    purge_create_order_cache(session)
    get_store().reset()
    return redirect(url_for('auth.index'))
