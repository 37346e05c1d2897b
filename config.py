"""Environment-driven settings for the TailorBook front."""
import os
import re

DEV_DEFAULT_ORIGIN = 'http://localhost:8083'
PROD_DEFAULT_ORIGIN = 'http://109.123.239.27:8083'

IS_PRODUCTION = (os.environ.get('FLASK_ENV') == 'production')


def sanitize_origin(value):
    """Trim, drop trailing slashes and a trailing /api segment."""
    s = (value or '').strip()
    s = re.sub(r'/+$', '', s)
    s = re.sub(r'/api$', '', s)
    return s


def _resolve_origin():
    raw = (
        os.environ.get('TAILORAPP_API')
        or os.environ.get('API_BASE')
        or os.environ.get('API_ORIGIN')
        or (PROD_DEFAULT_ORIGIN if IS_PRODUCTION else DEV_DEFAULT_ORIGIN)
    )
    origin = sanitize_origin(raw)
    if not re.match(r'^https?://', origin):
        raise ValueError("TAILORAPP_API must include http:// or https://")
    return origin


API_ORIGIN = _resolve_origin()

DEFAULT_SHOP_ID = int(os.environ.get('DEFAULT_SHOP_ID', '1') or 1)
SHOP_TIMEZONE = os.environ.get('SHOP_TIMEZONE', 'Asia/Dhaka')
DEBUG_PROXY = (os.environ.get('DEBUG_PROXY', '') or '').lower() == '1'
UPSTREAM_TIMEOUT = float(os.environ.get('UPSTREAM_TIMEOUT', '30') or 30)


def api_url(path):
    """Absolute backend URL for an API path."""
    return API_ORIGIN + (path if path.startswith('/') else f'/{path}')

REDIS_URL = os.environ.get('REDIS_URL')
DEFAULT_RATE_LIMITS = os.environ.get('FLASK_DEFAULT_RATE_LIMITS', '5000 per day,1200 per hour')
