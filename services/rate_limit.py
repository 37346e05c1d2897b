"""Flask-Limiter wiring.

Behind the reverse proxy every shop terminal can share one IP, so buckets
are keyed per login first and fall back to the client address.
"""
import hashlib

from flask import current_app, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

import config

FALLBACK_LIMITS = ['5000 per day', '1200 per hour']


def _digest(value):
    return hashlib.sha1(value.encode('utf-8')).hexdigest()[:16]


def parse_limits(raw):
    """'5000 per day, 1200 per hour' -> ['5000 per day', '1200 per hour']"""
    limits = [part.strip() for part in (raw or '').split(',') if part.strip()]
    return limits or list(FALLBACK_LIMITS)


def client_key():
    token = (request.cookies.get('access_token') or '').strip()
    if token:
        return f'tok:{_digest(token)}'

    session_cookie = (request.cookies.get(current_app.config.get('SESSION_COOKIE_NAME', 'session')) or '').strip()
    if session_cookie:
        return f'sess:{_digest(session_cookie)}'

    forwarded = (request.headers.get('X-Forwarded-For') or '').split(',')[0].strip()
    if forwarded:
        return forwarded
    return (request.headers.get('X-Real-IP') or '').strip() or get_remote_address()


def init_limiter(app):
    limiter = Limiter(
        client_key,
        app=app,
        storage_uri=config.REDIS_URL or 'memory://',
        default_limits=parse_limits(config.DEFAULT_RATE_LIMITS),
    )
    app.logger.info(f"[LIMITER] storage={'redis' if config.REDIS_URL else 'memory'}")
    return limiter
