"""Request helpers: shop id, paging, slug and return-URL handling."""
import datetime
from urllib.parse import urlencode

import pytz

import config
from services.backend_client import shop_id_from_jwt


def first_arg(args, *names):
    """First non-empty query value among names."""
    for name in names:
        value = args.get(name)
        if value:
            return value
    return ''


def to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def resolve_shop_id(req):
    """Shop id: ?shopId > shop_id cookie > JWT claim > DEFAULT_SHOP_ID."""
    q_shop = req.args.get('shopId')
    if q_shop:
        return to_int(q_shop, config.DEFAULT_SHOP_ID)
    cookie_shop = req.cookies.get('shop_id')
    if cookie_shop:
        return to_int(cookie_shop, config.DEFAULT_SHOP_ID)
    jwt_shop = shop_id_from_jwt(req.cookies.get('access_token'))
    if jwt_shop:
        return to_int(jwt_shop, config.DEFAULT_SHOP_ID)
    return config.DEFAULT_SHOP_ID


def get_paging(args, default_limit=10):
    page = max(to_int(args.get('page'), 0), 0)
    limit = to_int(args.get('limit'), default_limit)
    if limit <= 0:
        limit = default_limit
    return page, limit


def is_valid_slug(value):
    if not value:
        return False
    s = str(value).strip().lower()
    return bool(s) and s not in ('undefined', 'null')


def current_path(req):
    """Path plus query string, used as a post-login return target."""
    qs = req.query_string.decode('utf-8', 'replace')
    return req.path + (f'?{qs}' if qs else '')


def with_query(path, **params):
    clean = {k: v for k, v in params.items() if v is not None and v != ''}
    return f'{path}?{urlencode(clean)}' if clean else path


def shop_today():
    """Today's date in the shop's timezone."""
    return datetime.datetime.now(pytz.timezone(config.SHOP_TIMEZONE)).date()


def today_iso():
    return shop_today().isoformat()


def today_compact():
    return shop_today().strftime('%Y%m%d')
