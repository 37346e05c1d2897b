"""Dashboard Blueprint: summary tiles and recent orders."""
from flask import Blueprint, render_template, request, url_for, current_app

from constants import CURRENCY
from services.backend_client import get_backend, build_page_headers, read_json, unwrap_list, BackendError
from services.order_view import recent_orders, order_row
from services.request_utils import resolve_shop_id, current_path

dashboard_bp = Blueprint('dashboard', __name__)

SUMMARY_FIELDS = (
    'deliveryToday', 'deliveryTomorrow', 'newOrder', 'newOrderEarning',
    'deliveryOverdue', 'dueCollection', 'monthlyOrder', 'monthlyEarning',
)


def build_cards(summary, shop_id):
    def with_shop(endpoint):
        return url_for(endpoint, shopId=shop_id)

    return [
        {'label': 'Delivery Today', 'value': summary.get('deliveryToday')},
        {'label': 'Delivery Tomorrow', 'value': summary.get('deliveryTomorrow')},
        {'label': 'New Order', 'value': summary.get('newOrder'), 'href': with_shop('order_pages.new_orders')},
        {'label': 'Delivery Overdue', 'value': summary.get('deliveryOverdue'), 'color': '#ef4444',
         'href': with_shop('order_pages.delivery_overdue')},
        {'label': 'New Order Earning', 'value': f"{CURRENCY}{summary.get('newOrderEarning')}"},
        {'label': 'Due Collection', 'value': f"{CURRENCY}{summary.get('dueCollection')}", 'color': '#10b981'},
        {'label': 'Monthly Order', 'value': summary.get('monthlyOrder')},
        {'label': 'Monthly Earning', 'value': f"{CURRENCY}{summary.get('monthlyEarning')}"},
    ]


@dashboard_bp.route('/dashboard')
def dashboard():
    shop_id = resolve_shop_id(request)
    backend = get_backend()

    summary_json = backend.fetch_page_json('/api/dashboard/summary', request.cookies, current_path(request))
    summary = (summary_json or {}).get('data') if isinstance(summary_json, dict) else None
    if not isinstance(summary, dict):
        summary = {}
    summary = {k: summary.get(k, 0) for k in SUMMARY_FIELDS}

    # recent orders are best effort
    try:
        recent_resp = backend.request('GET', f'/api/orders/shop/{shop_id}',
                                      headers=build_page_headers(request.cookies),
                                      params={'limit': 5, 'page': 0})
        recent_raw = unwrap_list(read_json(recent_resp)) if recent_resp.ok else []
    except BackendError as e:
        current_app.logger.warning(f"[DASHBOARD] recent orders unavailable: {e.message}")
        recent_raw = []
    recent = [order_row(o) for o in recent_orders(recent_raw, limit=5)]

    return render_template('dashboard.html', cards=build_cards(summary, shop_id),
                           recent=recent, shop_id=shop_id)
