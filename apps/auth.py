import re

from flask import Blueprint, render_template, request, redirect, url_for, current_app, session

from constants import AUTH_COOKIE_KEYS, PUBLIC_PREFIXES, REMEMBER_MAX_AGE, SESSION_MAX_AGE
from services.backend_client import get_backend, read_json, shop_id_from_jwt, BackendError
from services.order_wizard import purge_create_order_cache
from services.request_utils import current_path

auth_bp = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'^\S+@\S+\.\S+$')
PIN_RE = re.compile(r'^\d{4,6}$')

# Cookies cleared on logout
LOGOUT_COOKIES = AUTH_COOKIE_KEYS + ['shop_id', 'session_ok']


def is_public(path):
    return any(path == p or path.startswith(p) for p in PUBLIC_PREFIXES)


def has_auth(req):
    """Any auth cookie, or a Bearer Authorization header."""
    for key in AUTH_COOKIE_KEYS:
        value = req.cookies.get(key)
        if isinstance(value, str) and len(value) > 0:
            return True
    bearer = req.headers.get('Authorization') or ''
    return bearer.strip().lower().startswith('bearer ')


def is_logged_in(req):
    return bool(req.cookies.get('tb_auth') or req.cookies.get('JSESSIONID') or req.cookies.get('access_token'))


@auth_bp.before_app_request
def auth_gate():
    """Send unauthenticated page requests to /login, keeping the return URL."""
    # "/" does its own login/dashboard redirect
    if request.path == '/' or is_public(request.path):
        return None
    if request.method in ('HEAD', 'OPTIONS'):
        return None
    if not has_auth(request):
        return redirect(url_for('auth.login', redirect=current_path(request)))
    return None


def validate_credentials(username, pin):
    if not EMAIL_RE.match(username or ''):
        return 'Please enter a valid email address.'
    if not PIN_RE.match(pin or ''):
        return 'PIN must be 4–6 digits.'
    return None


def read_token_from_headers(resp):
    token = resp.headers.get('Authorization') or resp.headers.get('X-Auth-Token')
    if token and token.lower().startswith('bearer '):
        token = token[7:]
    return token or None


def login_error_message(resp, body):
    if isinstance(body, str) and body:
        return body
    if isinstance(body, dict):
        msg = body.get('message') or body.get('error') or body.get('detail')
        if msg:
            return str(msg)
    return f'Login failed ({resp.status_code})'


def safe_redirect_target(target):
    """Only same-site relative paths are allowed as post-login targets."""
    if not target or not target.startswith('/') or target.startswith('//'):
        return url_for('dashboard.dashboard')
    return target


@auth_bp.route('/')
def index():
    if is_logged_in(request):
        return redirect(url_for('dashboard.dashboard'))
    return redirect(url_for('auth.login'))


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    redirect_to = request.args.get('redirect') or request.args.get('next') or ''

    if request.method == 'GET':
        return render_template('login.html', redirect_to=redirect_to, username='', remember=False)

    username = (request.form.get('username') or '').strip()
    pin = re.sub(r'\D', '', request.form.get('pin') or '')
    remember = bool(request.form.get('remember'))

    def fail(message, status=200):
        return render_template('login.html', error=message, redirect_to=redirect_to,
                               username=username, remember=remember), status

    invalid = validate_credentials(username, pin)
    if invalid:
        return fail(invalid)

    backend = get_backend()
    try:
        resp = backend.request('POST', '/api/auth/login',
                               headers={'Content-Type': 'application/json', 'Accept': 'application/json'},
                               json_body={'username': username, 'pin': pin})
    except BackendError as e:
        return fail(e.message)

    is_json = 'application/json' in (resp.headers.get('Content-Type') or '')
    body = read_json(resp) if is_json else resp.text

    if not resp.ok:
        current_app.logger.info(f"[AUTH] login failed for {username}: {resp.status_code}")
        return fail(login_error_message(resp, body))

    # 1) Token from headers or JSON
    token = read_token_from_headers(resp)
    data = body.get('data') if isinstance(body, dict) and isinstance(body.get('data'), dict) else {}
    if not token and isinstance(body, dict):
        token = data.get('token') or body.get('token')

    # 2) Shop id from body, else from JWT claims
    shop_id = None
    for key in ('shopID', 'shopId', 'shop_id'):
        if data.get(key) is not None:
            shop_id = str(data[key])
            break
    if shop_id is None:
        shop_id = shop_id_from_jwt(token)

    # 3) Cookies for the auth gate and server-side fetches
    max_age = REMEMBER_MAX_AGE if remember else SESSION_MAX_AGE
    response = redirect(safe_redirect_target(redirect_to))
    if token:
        response.set_cookie('access_token', token, max_age=max_age, path='/', samesite='Lax')
    if shop_id is not None:
        response.set_cookie('shop_id', shop_id, max_age=max_age, path='/', samesite='Lax')
    if not token and shop_id is None:
        # backend relies on its own httpOnly session cookie only
        response.set_cookie('session_ok', '1', max_age=max_age, path='/', samesite='Lax')

    # relay backend session cookies (JSESSIONID, tb_auth, ...)
    for cookie in resp.cookies:
        response.set_cookie(cookie.name, cookie.value or '', path='/', httponly=True, samesite='Lax')

    current_app.logger.info(f"[AUTH] login ok for {username} (shop {shop_id})")
    return response


@auth_bp.route('/logout', methods=['GET', 'POST'])
def logout():
    purge_create_order_cache(session)
    response = redirect(url_for('auth.login'))
    for name in LOGOUT_COOKIES:
        if name in request.cookies:
            response.delete_cookie(name, path='/')
    return response
