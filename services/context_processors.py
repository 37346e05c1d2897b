"""Flask context processors and template filters (split out of app.py)."""
import datetime
from urllib.parse import quote

from flask import request

from constants import CURRENCY, GENDERS, MEASUREMENT_OPTIONS, PHOTO_LABELS, AVATAR_FALLBACK_URL
from services.order_view import proxied


def bdt_filter(value):
    """৳1,234 style amount."""
    try:
        n = float(value)
    except (TypeError, ValueError):
        n = 0
    if n.is_integer():
        return f'{CURRENCY}{int(n):,}'
    return f'{CURRENCY}{n:,.2f}'


def date_long_filter(value):
    if not value:
        return '—'
    try:
        d = datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        return str(value)
    return d.strftime('%a, %d %b %Y')


def avatar_filter(photo, name='User', size=64):
    """Proxied customer photo, or a generated avatar when there is none."""
    if photo:
        return proxied(photo)
    return AVATAR_FALLBACK_URL.format(seed=quote(name or 'User', safe=''), size=size * 2)


def inject_globals():
    return dict(
        GENDERS=GENDERS,
        MEASUREMENT_OPTIONS=MEASUREMENT_OPTIONS,
        PHOTO_LABELS=PHOTO_LABELS,
        logged_in=bool(request.cookies.get('access_token') or request.cookies.get('JSESSIONID')
                       or request.cookies.get('tb_auth')),
    )


def register(app):
    app.add_template_filter(bdt_filter, 'bdt')
    app.add_template_filter(date_long_filter, 'date_long')
    app.add_template_filter(avatar_filter, 'avatar')
    app.context_processor(inject_globals)
