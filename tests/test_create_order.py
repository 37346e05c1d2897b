"""Create-order wizard pages, order placement and the QR receipt."""
import base64
import io
import json
from urllib.parse import unquote

import pytest

from apps.order_create import parse_numeric, suggestions_for, CHEST_STD, SIZES_STD
from conftest import make_response
from services.order_wizard import STORAGE_KEY, LAST_ORDER_KEY, CreateOrderStore

CUSTOMER = {'phone': '01700000000', 'name': 'Rahim', 'gender': 'MALE', 'shopId': 7}

CATALOG = [
    {'id': 3, 'nameEn': 'Shirt', 'parameters': [
        {'id': 11, 'nameEn': 'Chest', 'unit': 'inch', 'type': 'NUMERIC', 'nsId': 'n-chest',
         'suggestiveValues': ['37.5']},
        {'id': 12, 'nameEn': 'Pocket', 'type': 'BOOLEAN'},
        {'id': 13, 'nameEn': 'Collar', 'type': 'TEXT'},
    ]},
    {'id': 4, 'nameEn': 'Pant', 'parameters': [
        {'id': 21, 'nameEn': 'Waist', 'unit': 'inch', 'type': 'NUMERIC'},
    ]},
]

SHIRT_PARAMS = [
    {'id': 11, 'nameEn': 'Chest', 'nameBn': None, 'unit': 'inch', 'type': 'NUMERIC', 'nsId': 'n-chest'},
    {'id': 12, 'nameEn': 'Pocket', 'nameBn': None, 'unit': None, 'type': 'BOOLEAN', 'nsId': None},
    {'id': 13, 'nameEn': 'Collar', 'nameBn': None, 'unit': None, 'type': 'TEXT', 'nsId': None},
]

WORKING_SHIRT = dict(CUSTOMER, itemId=3, itemType='Shirt', itemParameters=SHIRT_PARAMS)

COMMITTED_SHIRT = {
    'itemId': 3, 'itemType': 'Shirt', 'itemParameters': SHIRT_PARAMS, 'measurementOption': 'NEW',
    'measurementValues': {'11': 38, '12': True, '13': 'Band'}, 'makingCharge': 500.0,
    'urgentDelivery': False, 'deliveryDate': None,
    'photos': {'orderCloth': '/api/proxy/image?src=x'}, 'photoUrls': {'orderCloth': 'http://img/cloth.jpg'},
}


def _seed(client, state=None, **session_extra):
    with client.session_transaction() as sess:
        sess[STORAGE_KEY] = json.dumps(state if state is not None else CUSTOMER)
        sess.update(session_extra)


def _state(client):
    with client.session_transaction() as sess:
        return CreateOrderStore(sess).state


def _location(resp):
    return unquote(resp.headers['Location'])


# Helpers

@pytest.mark.parametrize('raw, expected', [
    ('38', 38),
    ('38.5', 38.5),
    (' 40 ', 40),
    ('', ''),
    (None, ''),
    ('abc', ''),
    ('inf', ''),
])
def test_parse_numeric(raw, expected):
    assert parse_numeric(raw) == expected


def test_suggestions_prefer_catalog_values():
    assert suggestions_for({'nameEn': 'Chest', 'suggestiveValues': [36, 38]}) == ['36', '38']


def test_suggestions_fall_back_to_inch_tables():
    assert suggestions_for({'nameEn': 'Chest', 'unit': 'inch'}) == CHEST_STD
    assert suggestions_for({'nameEn': 'Waist', 'unit': 'INCH'}) == SIZES_STD
    assert suggestions_for({'nameEn': 'Chest', 'unit': 'cm'}) == SIZES_STD
    assert suggestions_for({'nameEn': 'Collar', 'type': 'TEXT'}) == []


# Step 1: customer

def test_customer_step_hydrates_shop_id(login):
    r = login.get('/orders/create?shopId=9')
    assert r.status_code == 200
    assert _state(login)['shopId'] == 9


def test_customer_step_validates(login):
    r = login.post('/orders/create', data={'phone': ' ', 'name': 'Rahim'})
    assert b'Phone number is required' in r.data
    r = login.post('/orders/create', data={'phone': '017', 'name': ''})
    assert b'Customer name is required' in r.data


def test_customer_step_saves_and_moves_on(login):
    _seed(login, {'shopId': 7})
    r = login.post('/orders/create', data={'phone': '017', 'name': 'Rahim', 'gender': 'FEMALE'})
    assert r.status_code == 302
    assert _location(r).endswith('/orders/create/items?shopId=7')
    state = _state(login)
    assert (state['phone'], state['name'], state['gender']) == ('017', 'Rahim', 'FEMALE')


def test_later_steps_need_a_customer(login):
    r = login.get('/orders/create/items')
    assert r.status_code == 302
    assert _location(r).endswith('/orders/create')


# Step 2: items

def test_items_requires_a_selection(login, upstream):
    _seed(login)
    upstream.add('GET', '/api/items', make_response(200, json_body={'data': CATALOG}))
    r = login.post('/orders/create/items', data={'itemId': ''})
    assert b'Please select an item' in r.data


def test_items_selects_catalog_item(login, upstream):
    _seed(login)
    upstream.add('GET', '/api/items', make_response(200, json_body={'data': CATALOG}))
    r = login.post('/orders/create/items', data={'itemId': '3', 'measurementOption': 'USE_LAST'})
    assert r.status_code == 302
    assert _location(r).endswith('/orders/create/measurements?shopId=7')
    state = _state(login)
    assert state['itemId'] == 3
    assert state['itemType'] == 'Shirt'
    assert state['measurementOption'] == 'USE_LAST'
    assert 'suggestiveValues' not in state['itemParameters'][0]


def test_items_switching_item_drops_measurements(login, upstream):
    _seed(login, dict(WORKING_SHIRT, measurementValues={'11': 38}))
    upstream.add('GET', '/api/items', make_response(200, json_body={'data': {'content': CATALOG}}))
    login.post('/orders/create/items', data={'itemId': '4'})
    state = _state(login)
    assert state['itemType'] == 'Pant'
    assert state['measurementValues'] == {}


def test_items_page_survives_catalog_failure(login, upstream):
    _seed(login)
    upstream.add('GET', '/api/items', make_response(500, text='down'))
    r = login.get('/orders/create/items')
    assert r.status_code == 200
    assert b'could not be loaded' in r.data


# Step 3: measurements

def test_measurements_page_shows_catalog_suggestions(login, upstream):
    _seed(login, WORKING_SHIRT)
    upstream.add('GET', '/api/items', make_response(200, json_body={'data': CATALOG}))
    r = login.get('/orders/create/measurements')
    assert r.status_code == 200
    assert b'<option value="37.5">' in r.data


def test_measurements_post_parses_by_type(login, upstream):
    _seed(login, WORKING_SHIRT)
    r = login.post('/orders/create/measurements', data={'m_11': '38.5', 'm_12': '1', 'm_13': 'Band'})
    assert r.status_code == 302
    assert _location(r).endswith('/orders/create/photos?shopId=7')
    assert _state(login)['measurementValues'] == {'11': 38.5, '12': True, '13': 'Band'}

    login.post('/orders/create/measurements', data={'m_11': 'abc'})
    assert _state(login)['measurementValues'] == {'11': '', '12': False, '13': ''}


def test_measurements_need_an_item(login):
    _seed(login)
    r = login.get('/orders/create/measurements')
    assert _location(r).endswith('/orders/create/items?shopId=7')


# Step 4: photos

def _upload(client, key='orderCloth'):
    return client.post('/orders/create/photos', data={
        'key': key, 'action': 'upload', 'file': (io.BytesIO(b'JPG'), 'c.jpg', 'image/jpeg'),
    }, content_type='multipart/form-data')


def test_photo_upload_stores_url_and_preview(login, upstream):
    _seed(login, WORKING_SHIRT)
    upstream.add('POST', '/api/photos/upload-base64',
                 make_response(200, json_body={'data': {'url': 'http://img/cloth.jpg'}}))
    r = _upload(login)
    assert r.status_code == 200
    (call,) = upstream.calls
    assert call['json'] == {'photo': base64.b64encode(b'JPG').decode('ascii'), 'imageName': 'cloth'}
    assert call['headers']['Authorization'] == 'Bearer tok-123'
    state = _state(login)
    assert state['photoUrls'] == {'orderCloth': 'http://img/cloth.jpg'}
    assert state['photos']['orderCloth'].startswith('/api/proxy/image?src=')
    assert b'http%3A%2F%2Fimg%2Fcloth.jpg' in r.data


def test_photo_upload_uses_slot_image_name(login, upstream):
    _seed(login, WORKING_SHIRT)
    upstream.add('POST', '/api/photos/upload-base64', make_response(200, json_body={'imageUrl': 'http://img/s.jpg'}))
    _upload(login, key='designSketch')
    assert upstream.calls[0]['json']['imageName'] == 'design-sketch'
    assert _state(login)['photoUrls'] == {'designSketch': 'http://img/s.jpg'}


def test_photo_upload_without_token(client, upstream):
    client.set_cookie('JSESSIONID', 's1')
    _seed(client, WORKING_SHIRT)
    r = _upload(client)
    assert b'Your session expired. Please log in again.' in r.data
    assert upstream.calls == []


def test_photo_upload_unauthorized(login, upstream):
    _seed(login, WORKING_SHIRT)
    upstream.add('POST', '/api/photos/upload-base64', make_response(401, text='expired'))
    r = _upload(login)
    assert b'Unauthorized. Please login again.' in r.data


def test_photo_upload_without_url(login, upstream):
    _seed(login, WORKING_SHIRT)
    upstream.add('POST', '/api/photos/upload-base64', make_response(200, json_body={'ok': True}))
    r = _upload(login)
    assert b'Upload succeeded but response had no image URL' in r.data
    assert _state(login)['photoUrls'] == {}


def test_photo_next_requires_cloth(login):
    _seed(login, WORKING_SHIRT)
    r = login.post('/orders/create/photos', data={'action': 'next'})
    assert r.status_code == 200
    assert b'Order Cloth Photo is required' in r.data

    _seed(login, dict(WORKING_SHIRT, photoUrls={'orderCloth': 'http://img/c.jpg'}))
    r = login.post('/orders/create/photos', data={'action': 'next'})
    assert _location(r).endswith('/orders/create/extras?shopId=7')


def test_photo_remove(login):
    _seed(login, dict(WORKING_SHIRT, photos={'orderCloth': 'p'}, photoUrls={'orderCloth': 'u'}))
    login.post('/orders/create/photos', data={'action': 'remove', 'key': 'orderCloth'})
    state = _state(login)
    assert state['photos'] == {} and state['photoUrls'] == {}


# Step 5: extras

def test_extras_validation(login):
    _seed(login, WORKING_SHIRT)
    r = login.post('/orders/create/extras', data={'makingCharge': ''})
    assert b'Making charge is required' in r.data
    r = login.post('/orders/create/extras', data={'makingCharge': '500', 'urgentDelivery': 'on'})
    assert b'Please select a delivery date' in r.data


def test_extras_saves_charge(login):
    _seed(login, WORKING_SHIRT)
    r = login.post('/orders/create/extras', data={'makingCharge': '500'})
    assert _location(r).endswith('/orders/create/summary?shopId=7')
    state = _state(login)
    assert state['makingCharge'] == 500.0
    assert state['urgentDelivery'] is False
    assert state['deliveryDate'] is None


# Step 6: summary

def test_summary_validation(login):
    _seed(login, dict(WORKING_SHIRT, makingCharge=500))
    r = login.post('/orders/create/summary', data={'action': 'continue', 'advance': '200'})
    assert b'Please pick a delivery date for non-urgent items' in r.data
    r = login.post('/orders/create/summary', data={
        'action': 'continue', 'advance': '', 'remainingDeliveryDate': '2026-11-01'})
    assert b'Advance payment is required' in r.data


def test_summary_continue_commits_working_item(login):
    _seed(login, dict(WORKING_SHIRT, makingCharge=500))
    r = login.post('/orders/create/summary', data={
        'action': 'continue', 'advance': '200', 'remainingDeliveryDate': '2026-11-01'})
    assert r.status_code == 302
    assert _location(r).endswith('/orders/create/confirm?shopId=7&advance=200')
    state = _state(login)
    assert len(state['orderItems']) == 1
    assert state['itemId'] is None
    assert state['remainingDeliveryDate'] == '2026-11-01'


def test_summary_add_item_goes_back_to_items(login):
    _seed(login, dict(WORKING_SHIRT, makingCharge=500))
    r = login.post('/orders/create/summary', data={'action': 'add'})
    assert _location(r).endswith('/orders/create/items?shopId=7')
    assert len(_state(login)['orderItems']) == 1


def test_summary_edit_moves_item_back(login):
    _seed(login, dict(CUSTOMER, orderItems=[COMMITTED_SHIRT]))
    r = login.post('/orders/create/summary', data={'action': 'edit', 'index': '0'})
    assert _location(r).endswith('/orders/create/extras?shopId=7')
    state = _state(login)
    assert state['orderItems'] == []
    assert state['itemType'] == 'Shirt'


def test_summary_needs_items(login):
    _seed(login)
    r = login.get('/orders/create/summary')
    assert _location(r).endswith('/orders/create/items?shopId=7')


# Step 7: confirm

READY = dict(CUSTOMER, orderItems=[COMMITTED_SHIRT], remainingDeliveryDate='2026-11-01')


def test_confirm_shows_due(login):
    _seed(login, READY)
    r = login.get('/orders/create/confirm?advance=200')
    html = r.get_data(as_text=True)
    assert '৳500' in html
    assert '৳300' in html


def test_confirm_places_order(login, upstream):
    _seed(login, READY)
    upstream.add('POST', '/api/orders', make_response(200, json_body={
        'data': {'orderId': '7-20261018-0009', 'id': 55, 'totalAmount': 500}}))
    r = login.post('/orders/create/confirm?advance=200')
    assert r.status_code == 302
    location = _location(r)
    assert '/orders/create/success?' in location
    assert 'orderId=7-20261018-0009' in location
    assert 'id=55' in location

    (call,) = upstream.calls
    payload = json.loads(call['data'])
    assert payload['paidAmount'] == 200
    assert payload['shopId'] == 7
    assert payload['deliveryDate'] == '2026-11-01'
    assert payload['items'][0]['measurementGroups'][0]['clothPhoto'] == 'http://img/cloth.jpg'
    assert call['headers']['Content-Type'] == 'application/json'
    with login.session_transaction() as sess:
        assert json.loads(sess[LAST_ORDER_KEY])['totalAmount'] == 500


def test_confirm_falls_back_to_local_order_id(login, upstream, monkeypatch):
    monkeypatch.setattr('apps.order_create.today_compact', lambda: '20261018')
    _seed(login, READY)
    upstream.add('POST', '/api/orders', make_response(200, json_body={'data': {}}))
    r = login.post('/orders/create/confirm')
    location = _location(r)
    assert 'orderId=7-20261018-0001' in location
    assert '&id=' not in location


def test_confirm_requires_cloth_photo(login, upstream):
    _seed(login, dict(READY, orderItems=[dict(COMMITTED_SHIRT, photoUrls={})]))
    r = login.post('/orders/create/confirm')
    assert b'Cloth image is required' in r.data
    assert upstream.calls == []


def test_confirm_unauthorized_goes_to_login(login, upstream):
    _seed(login, READY)
    upstream.add('POST', '/api/orders', make_response(401, text='expired'))
    r = login.post('/orders/create/confirm?advance=100')
    assert r.status_code == 302
    assert '/login?next=/orders/create/confirm' in _location(r)


def test_confirm_shows_backend_error(login, upstream):
    _seed(login, READY)
    upstream.add('POST', '/api/orders', make_response(500, text='duplicate order'))
    r = login.post('/orders/create/confirm')
    assert r.status_code == 200
    assert b'duplicate order' in r.data


# Step 8: success

def test_success_receipt(login):
    _seed(login, READY, **{LAST_ORDER_KEY: json.dumps({
        'customerName': 'Rahim', 'totalAmount': 500, 'paidAmount': 200.5, 'orderDate': '20261018'})})
    r = login.get('/orders/create/success?orderId=7-1&id=55')
    html = r.get_data(as_text=True)
    assert '2026-10-18' in html
    assert '৳299.50' in html
    assert '/orders/create/success/qr?id=55' in html


def test_success_without_db_id_uses_public_qr(login):
    r = login.get('/orders/create/success?orderId=7-1')
    assert b'api.qrserver.com' in r.data
    assert b'data=7-1' in r.data


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr('apps.order_create.time.sleep', calls.append)
    return calls


def test_qr_retries_and_alternates_methods(login, upstream, sleeps):
    png = base64.b64encode(b'PNGDATA').decode('ascii')
    upstream.add('GET', '/api/orders/55/qrcode', make_response(500, text='not yet'))
    upstream.add('POST', '/api/orders/55/qrcode',
                 make_response(200, json_body={'data': {'qrCode': f'data:image/png;base64,{png}'}}))
    r = login.get('/orders/create/success/qr?id=55&orderId=7-1')
    assert r.status_code == 200
    assert r.data == b'PNGDATA'
    assert r.headers['Content-Type'] == 'image/png'
    assert [c['method'] for c in upstream.calls] == ['GET', 'POST']
    assert sleeps == [0.5]


def test_qr_image_body_is_returned_as_is(login, upstream, sleeps):
    upstream.add('GET', '/api/orders/55/qrcode',
                 make_response(200, content=b'\x89PNG', headers={'Content-Type': 'image/png'}))
    r = login.get('/orders/create/success/qr?id=55')
    assert r.data == b'\x89PNG'
    assert sleeps == []


def test_qr_remote_url_goes_through_image_proxy(login, upstream, sleeps):
    upstream.add('GET', '/api/orders/55/qrcode', make_response(200, json_body={'qrCode': 'https://cdn.test/q.png'}))
    r = login.get('/orders/create/success/qr?id=55')
    assert r.status_code == 302
    assert _location(r).endswith('/api/proxy/image?src=https://cdn.test/q.png')


def test_qr_gives_up_after_four_attempts(login, upstream, sleeps):
    upstream.add('GET', '/api/orders/55/qrcode', make_response(500, text='no'))
    upstream.add('POST', '/api/orders/55/qrcode', make_response(500, text='no'))
    r = login.get('/orders/create/success/qr?id=55&orderId=7-1')
    assert r.status_code == 302
    assert r.headers['Location'].startswith('https://api.qrserver.com/')
    assert r.headers['Location'].endswith('data=7-1')
    assert [c['method'] for c in upstream.calls] == ['GET', 'POST', 'GET', 'POST']
    assert sleeps == [0.5, 1.0, 2.0]


def test_qr_without_id_skips_backend(login, upstream):
    r = login.get('/orders/create/success/qr?orderId=7-1')
    assert r.headers['Location'].startswith('https://api.qrserver.com/')
    assert upstream.calls == []


def test_success_home_clears_wizard(login):
    _seed(login, READY, **{LAST_ORDER_KEY: '{}'})
    r = login.post('/orders/create/success/home')
    assert r.status_code == 302
    assert r.headers['Location'].endswith('/')
    with login.session_transaction() as sess:
        assert LAST_ORDER_KEY not in sess
        assert json.loads(sess[STORAGE_KEY])['phone'] == ''


def test_qr_bare_base64_with_slashes_is_png(login, upstream, sleeps):
    png = b'\x89PNG\r\n' + b'\xff' * 90
    encoded = base64.b64encode(png).decode('ascii')
    assert '/' in encoded
    upstream.add('GET', '/api/orders/55/qrcode', make_response(200, json_body={'qrCode': encoded}))
    r = login.get('/orders/create/success/qr?id=55')
    assert r.status_code == 200
    assert r.headers['Content-Type'] == 'image/png'
    assert r.data == png


def test_qr_relative_path_goes_through_image_proxy(login, upstream, sleeps):
    upstream.add('GET', '/api/orders/55/qrcode', make_response(200, json_body={'url': '/qr/55.png'}))
    r = login.get('/orders/create/success/qr?id=55')
    assert r.status_code == 302
    assert _location(r).endswith('/api/proxy/image?src=http://backend.test/qr/55.png')
