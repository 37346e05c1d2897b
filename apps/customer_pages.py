"""Customer list page."""
from flask import Blueprint, render_template, request

from services.backend_client import get_backend, unwrap_list
from services.request_utils import resolve_shop_id, get_paging, with_query

customer_pages_bp = Blueprint('customer_pages', __name__, url_prefix='/customers')


@customer_pages_bp.route('/all')
def customers_all():
    shop_id = resolve_shop_id(request)
    page, limit = get_paging(request.args, default_limit=50)

    payload = get_backend().fetch_page_json(
        f'/api/customers/by-shop/{shop_id}',
        request.cookies,
        with_query('/customers/all', shopId=shop_id),
        params={'page': page, 'limit': limit},
    )
    customers = unwrap_list(payload)
    return render_template('customers_all.html', customers=customers, shop_id=shop_id,
                           page=page, limit=limit)
