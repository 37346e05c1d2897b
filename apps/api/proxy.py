"""Backend proxy routes.

Every route here forwards the browser's auth signals (bearer, cookies and
CSRF token) through build_forward_headers and relays the backend answer
as-is: status, body and content type.
"""
from urllib.parse import quote, urlparse

from flask import Blueprint, Response, request, current_app

from services.backend_client import (
    get_backend, build_forward_headers, normalize_bearer, BackendError,
)

proxy_bp = Blueprint('proxy', __name__, url_prefix='/api/proxy')
passthrough_bp = Blueprint('passthrough', __name__)

# Backend response headers relayed by the passthrough
RELAYED_HEADERS = ('Authorization', 'X-Auth-Token')


def relay(resp, default_type='application/json'):
    return Response(
        resp.text,
        status=resp.status_code,
        content_type=resp.headers.get('Content-Type') or default_type,
    )


def transport_failure(e):
    current_app.logger.warning(f"[proxy] {request.method} {request.path}: {e.message}")
    return Response(e.message, status=502, content_type='text/plain')


def _seg(value):
    return quote(str(value), safe='')


@proxy_bp.route('/orders/<order_id>', methods=['PUT', 'PATCH', 'POST'])
def update_order(order_id):
    try:
        resp = get_backend().send_with_method_fallback(
            f'/api/orders/{_seg(order_id)}', request.method, build_forward_headers(request), request.get_data(),
        )
    except BackendError as e:
        return transport_failure(e)
    return relay(resp)


@proxy_bp.route('/order-items/<item_id>', methods=['PATCH', 'PUT'])
@proxy_bp.route('/orders/order-items/<item_id>', methods=['PATCH', 'PUT'])
def update_order_item(item_id):
    try:
        resp = get_backend().request(
            request.method, f'/api/order-items/{_seg(item_id)}',
            headers=build_forward_headers(request), data=request.get_data() or b'{}',
        )
    except BackendError as e:
        return transport_failure(e)
    return relay(resp)


def _forward_photo(path):
    """POST (multipart, own boundary) or DELETE a photo with ?type= (default cloth)."""
    kind = request.args.get('type') or 'cloth'
    data = request.get_data() if request.method == 'POST' else None
    try:
        resp = get_backend().request(
            request.method, path, headers=build_forward_headers(request, json_body=False),
            params={'type': kind}, data=data,
        )
    except BackendError as e:
        return transport_failure(e)
    return relay(resp)


@proxy_bp.route('/order-items/<item_id>/photos', methods=['POST', 'DELETE'])
@proxy_bp.route('/orders/order-items/<item_id>/photos', methods=['POST', 'DELETE'])
def order_item_photos(item_id):
    return _forward_photo(f'/api/order-items/{_seg(item_id)}/photos')


@proxy_bp.route('/orders/<order_id>/items/<item_id>/photos', methods=['POST', 'DELETE'])
def order_line_photos(order_id, item_id):
    return _forward_photo(f'/api/orders/{_seg(order_id)}/items/{_seg(item_id)}/photos')


@proxy_bp.route('/image')
def image():
    src = request.args.get('src')
    if not src:
        return Response('Missing src', status=400, content_type='text/plain')

    backend = get_backend()
    target = backend.url(src)
    headers = {}
    # The access token only goes to our own API host
    if urlparse(target).netloc == backend.host:
        bearer = normalize_bearer(request.cookies.get('access_token'))
        if bearer:
            headers['Authorization'] = bearer

    try:
        resp = backend.request('GET', target, headers=headers, allow_redirects=True)
    except BackendError:
        return Response('Failed to fetch image', status=502, content_type='text/plain')
    if not resp.ok:
        return Response(resp.text, status=resp.status_code, content_type='text/plain')

    out = Response(resp.content, status=200, content_type=resp.headers.get('Content-Type') or 'image/jpeg')
    if resp.headers.get('Content-Length'):
        out.headers['Content-Length'] = resp.headers['Content-Length']
    out.headers['Cache-Control'] = 'public, max-age=300'
    return out


def _set_cookie_headers(resp):
    raw_headers = getattr(resp.raw, 'headers', None)
    if hasattr(raw_headers, 'getlist'):
        return raw_headers.getlist('Set-Cookie')
    value = resp.headers.get('Set-Cookie')
    return [value] if value else []


@passthrough_bp.route('/api/<path:path>', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])
def passthrough(path):
    """Anything else under /api goes to the backend unchanged."""
    headers = build_forward_headers(request, json_body=False)
    headers['Accept'] = request.headers.get('Accept') or 'application/json'
    try:
        resp = get_backend().request(
            request.method, f'/api/{path}', headers=headers,
            params=request.args.to_dict(flat=False), data=request.get_data() or None,
        )
    except BackendError as e:
        return transport_failure(e)

    out = Response(resp.content, status=resp.status_code,
                   content_type=resp.headers.get('Content-Type') or 'application/json')
    for cookie in _set_cookie_headers(resp):
        out.headers.add('Set-Cookie', cookie)
    for name in RELAYED_HEADERS:
        if resp.headers.get(name):
            out.headers[name] = resp.headers[name]
    return out
