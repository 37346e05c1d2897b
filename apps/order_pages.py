"""Order pages Blueprint: all orders, new orders, overdue deliveries, order detail."""
from urllib.parse import quote

from flask import Blueprint, render_template, request, abort

from constants import LIMIT_OPTIONS
from services.backend_client import get_backend, unwrap_list
from services.order_view import order_row, detail_view
from services.request_utils import (
    resolve_shop_id, get_paging, with_query, is_valid_slug, first_arg, today_iso, current_path,
)

order_pages_bp = Blueprint('order_pages', __name__, url_prefix='/orders')


def _content_of(payload):
    data = payload.get('data') if isinstance(payload, dict) else None
    if isinstance(data, dict) and isinstance(data.get('content'), list):
        return data['content']
    return []


def _pager(endpoint_path, shop_id, page, limit, count, **extra):
    """Prev/next links; a full page means there may be another one."""
    prev_url = with_query(endpoint_path, shopId=shop_id, page=page - 1, limit=limit, **extra) if page > 0 else None
    next_url = with_query(endpoint_path, shopId=shop_id, page=page + 1, limit=limit, **extra) if count >= limit else None
    return {'prev': prev_url, 'next': next_url, 'page': page, 'limit': limit, 'options': LIMIT_OPTIONS}


@order_pages_bp.route('/all')
def orders_all():
    shop_id = resolve_shop_id(request)
    page, limit = get_paging(request.args, default_limit=10)

    payload = get_backend().fetch_page_json(
        f'/api/orders/shop/{shop_id}',
        request.cookies,
        current_path(request),
        params={'limit': limit, 'page': page},
    )
    orders = [order_row(o) for o in unwrap_list(payload)]
    return render_template('orders_list.html', title='All Orders', orders=orders, shop_id=shop_id,
                           pager=_pager('/orders/all', shop_id, page, limit, len(orders)),
                           list_path='/orders/all')


@order_pages_bp.route('/new-order')
def new_orders():
    shop_id = resolve_shop_id(request)
    page, limit = get_paging(request.args, default_limit=10)
    order_date = request.args.get('orderDate') or today_iso()

    payload = get_backend().fetch_page_json(
        '/api/dashboard/orders/new',
        request.cookies,
        with_query('/orders/new-order', orderDate=order_date),
        params={'orderDate': order_date, 'page': page, 'limit': limit, 'shopId': shop_id},
    )
    orders = [order_row(o) for o in _content_of(payload)]
    return render_template('orders_list.html', title='New Orders', orders=orders, shop_id=shop_id,
                           order_date=order_date,
                           pager=_pager('/orders/new-order', shop_id, page, limit, len(orders), orderDate=order_date),
                           list_path='/orders/new-order')


@order_pages_bp.route('/delivery-overdue')
def delivery_overdue():
    shop_id = resolve_shop_id(request)
    page, limit = get_paging(request.args, default_limit=10)

    payload = get_backend().fetch_page_json(
        '/api/dashboard/orders/overdue',
        request.cookies,
        with_query('/orders/delivery-overdue', shopId=shop_id),
        params={'shopId': shop_id, 'page': page, 'limit': limit},
    )
    orders = [order_row(o) for o in _content_of(payload)]
    return render_template('orders_list.html', title='Delivery Overdue', orders=orders, shop_id=shop_id,
                           pager=_pager('/orders/delivery-overdue', shop_id, page, limit, len(orders)),
                           list_path='/orders/delivery-overdue', show_status=True)


@order_pages_bp.route('/<order_id>')
def order_detail(order_id):
    slug = order_id
    if not is_valid_slug(slug):
        from_query = first_arg(request.args, 'orderId', 'code', 'id')
        if is_valid_slug(from_query):
            slug = from_query
    if not is_valid_slug(slug):
        abort(404)

    payload = get_backend().fetch_page_json(
        f'/api/orders/{quote(slug, safe="")}', request.cookies, f'/orders/{slug}', not_found_ok=True,
    )
    vm = detail_view(payload or {})
    if not vm:
        abort(404)
    return render_template('order_detail.html', vm=vm)
