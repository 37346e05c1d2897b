"""Order edit Blueprint: measurement group editor and its photo step."""
import json
from urllib.parse import quote

from flask import Blueprint, render_template, request, redirect, url_for, abort, session, current_app

from constants import EDIT_PHOTO_FIELDS
from services.backend_client import (
    get_backend, build_page_headers, csrf_headers, unwrap_data, read_json, LoginRedirect, BackendError,
)
from services.order_view import edit_view, apply_form, build_update_payload, photos_view, proxied
from services.request_utils import is_valid_slug, first_arg, with_query

order_edit_bp = Blueprint('order_edit', __name__, url_prefix='/orders')


def draft_key(order_code, group_id):
    return f'tb:draft:{order_code}:{group_id}'


def _load_order(slug, return_to):
    payload = get_backend().fetch_page_json(
        f'/api/orders/{quote(slug, safe="")}', request.cookies, return_to, not_found_ok=True,
    )
    data = unwrap_data(payload) if payload else None
    if not isinstance(data, dict) or not data:
        abort(404)
    return data


def _json_headers():
    headers = build_page_headers(request.cookies)
    headers['Content-Type'] = 'application/json; charset=utf-8'
    headers.update(csrf_headers(request))
    return headers


def _is_image(file):
    return (file.mimetype or '').lower().startswith('image/')


@order_edit_bp.route('/<order_id>/edit', methods=['GET', 'POST'])
def edit_order(order_id):
    if not is_valid_slug(order_id):
        abort(404)
    group_id = first_arg(request.args, 'groupId', 'gid') or request.form.get('groupId') or ''
    return_to = with_query(f'/orders/{order_id}/edit', groupId=group_id)

    data = _load_order(order_id, return_to)
    initial = edit_view(data, group_id)
    if not initial:
        abort(404)

    key = draft_key(initial['orderCode'], initial['groupId'])
    error = None

    if request.method == 'POST':
        vm = apply_form(initial, request.form)
        payload = build_update_payload(vm, initial)
        items = payload.get('items') or [{}]
        if not items[0].get('itemId'):
            error = 'Item is missing; cannot update order.'
        else:
            try:
                resp = get_backend().send_with_method_fallback(
                    f'/api/orders/{quote(str(vm["orderDbId"]), safe="")}', 'PUT', _json_headers(),
                    json.dumps(payload).encode('utf-8'),
                )
            except BackendError as e:
                resp, error = None, e.message
            if resp is not None:
                if resp.status_code in (401, 403):
                    raise LoginRedirect(return_to)
                if resp.ok:
                    session.pop(key, None)
                    current_app.logger.info(f"[ORDER] updated {vm['orderCode']} group {vm['groupId']}")
                    return redirect(with_query(f'/orders/{quote(str(vm["orderCode"]), safe="")}/edit/photos',
                                               groupId=vm['groupId']))
                error = resp.text or f'Order update failed ({resp.status_code})'
        # keep what the user typed
        session[key] = vm
        return render_template('order_edit.html', vm=vm, error=error), 400

    vm = session.get(key) or initial
    return render_template('order_edit.html', vm=vm, error=error)


def _photo_endpoints(vm):
    """Item-scoped endpoint first when the item is known, then the measurement-group one."""
    endpoints = []
    if vm.get('itemId') is not None and str(vm['itemId']) != '':
        endpoints.append(f"/api/orders/{quote(str(vm['orderId']), safe='')}/items/{quote(str(vm['itemId']), safe='')}/photos")
    endpoints.append(f"/api/order-items/{quote(str(vm['groupId']), safe='')}/photos")
    return endpoints


def _send_photo(vm, method, kind, file=None):
    """Returns (ok, new_url, error); raises LoginRedirect on 401/403."""
    backend = get_backend()
    headers = build_page_headers(request.cookies)
    headers.update(csrf_headers(request))
    return_to = with_query(f"/orders/{vm['orderId']}/edit/photos", groupId=vm['groupId'])

    last_text, last_status = '', 0
    for path in _photo_endpoints(vm):
        if file is not None:
            file.stream.seek(0)
            files = {'file': (file.filename, file.stream, file.mimetype or 'application/octet-stream')}
            resp = backend.request(method, path, headers=headers, params={'type': kind}, files=files)
        else:
            resp = backend.request(method, path, headers=headers, params={'type': kind})
        if resp.ok:
            body = read_json(resp) if 'application/json' in (resp.headers.get('Content-Type') or '') else None
            new_url = None
            if isinstance(body, dict):
                data = body.get('data') if isinstance(body.get('data'), dict) else {}
                new_url = (data.get('url') or body.get('url')
                           or data.get(f'{kind}Photo') or body.get(f'{kind}Photo'))
            return True, new_url, None
        last_text, last_status = resp.text, resp.status_code
        if resp.status_code in (401, 403):
            raise LoginRedirect(return_to)
    verb = 'Upload' if file is not None else 'Delete'
    return False, None, last_text or f'{verb} failed ({last_status})'


@order_edit_bp.route('/<order_id>/edit/photos', methods=['GET', 'POST'])
def edit_photos(order_id):
    group_id = first_arg(request.args, 'groupId', 'gid')
    if not group_id or not is_valid_slug(order_id):
        abort(404)
    return_to = with_query(f'/orders/{order_id}/edit/photos', groupId=group_id)

    data = _load_order(order_id, return_to)
    vm = photos_view(data, group_id)
    if not vm:
        abort(404)

    error = None
    if request.method == 'POST':
        action = request.form.get('action', 'upload')
        kind = request.form.get('kind', '')
        if kind not in EDIT_PHOTO_FIELDS:
            abort(400)
        try:
            if action == 'delete':
                ok, _, error = _send_photo(vm, 'DELETE', kind)
                if ok:
                    vm['photos'][kind] = None
            else:
                file = request.files.get('file')
                if not file or not file.filename:
                    error = 'Please choose a photo to upload.'
                elif not _is_image(file):
                    error = 'Unsupported file type.'
                else:
                    ok, new_url, error = _send_photo(vm, 'POST', kind, file=file)
                    if ok and new_url:
                        vm['photos'][kind] = proxied(new_url)
                    elif ok:
                        # re-read persisted photos
                        return redirect(return_to)
        except BackendError as e:
            error = e.message
        if error:
            current_app.logger.warning(f"[ORDER] photo {action} {kind} failed for {order_id}: {error}")

    return render_template('order_edit_photos.html', vm=vm, error=error,
                           back_url=with_query(f"/orders/{vm['orderId']}/edit", groupId=vm['groupId']),
                           next_url=url_for('order_pages.order_detail', order_id=str(vm['orderId'])))
