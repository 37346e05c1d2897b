"""Access to the tailoring REST backend: auth/CSRF header forwarding and the HTTP client."""
import base64
import json
import re
from urllib.parse import unquote, urlparse

import requests
from flask import current_app

import config
from constants import (
    BEARER_COOKIE_KEYS,
    CSRF_COOKIE_KEYS,
    CSRF_HEADER_KEYS,
    BACKEND_SESSION_COOKIES,
)


class BackendError(Exception):
    """Backend answered with an unexpected status, or could not be reached."""

    def __init__(self, message, status=502, body=''):
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body


class LoginRedirect(Exception):
    """Backend rejected our credentials; the user has to log in again."""

    def __init__(self, return_to):
        super().__init__(return_to)
        self.return_to = return_to


def try_decode(value):
    if not value:
        return value
    try:
        return unquote(value, errors='strict')
    except UnicodeDecodeError:
        return value


def normalize_bearer(raw):
    """Turn a raw token (maybe URI-encoded, quoted or already prefixed) into 'Bearer <token>'."""
    if not raw:
        return None
    val = (try_decode(raw) or raw).strip().strip('"').strip()
    if not val:
        return None
    if re.match(r'^Bearer\s', val, re.IGNORECASE):
        return val
    return f'Bearer {val}'


def bearer_from_request(req):
    """Bearer from the Authorization header, then ?b= / ?bearer=, then auth cookies."""
    header_bearer = normalize_bearer(req.headers.get('Authorization'))
    if header_bearer:
        return header_bearer
    query_bearer = normalize_bearer(req.args.get('b') or req.args.get('bearer'))
    if query_bearer:
        return query_bearer
    for key in BEARER_COOKIE_KEYS:
        cookie_bearer = normalize_bearer(req.cookies.get(key))
        if cookie_bearer:
            return cookie_bearer
    return None


def csrf_headers(req):
    """Promote a CSRF cookie to X-XSRF-TOKEN unless the caller already sent a CSRF header."""
    csrf_cookie = None
    for key in CSRF_COOKIE_KEYS:
        if req.cookies.get(key):
            csrf_cookie = req.cookies.get(key)
            break

    headers = {}
    if csrf_cookie and not req.headers.get('x-xsrf-token') and not req.headers.get('x-csrf-token'):
        headers['X-XSRF-TOKEN'] = csrf_cookie
    else:
        for key in CSRF_HEADER_KEYS:
            value = req.headers.get(key)
            if value:
                headers[key] = value
    return headers


def build_forward_headers(req, json_body=True):
    """Headers for relaying a browser request to the backend.

    JSON routes get Accept/Content-Type set; multipart routes must keep the
    caller's own Content-Type (with its boundary), so it is copied instead.
    """
    if json_body:
        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json; charset=utf-8',
        }
    else:
        headers = {}
        if req.content_type:
            headers['Content-Type'] = req.content_type

    incoming_cookie = req.headers.get('Cookie')
    if incoming_cookie:
        headers['Cookie'] = incoming_cookie

    bearer = bearer_from_request(req)
    if bearer:
        headers['Authorization'] = bearer

    headers.update(csrf_headers(req))
    return headers


def build_page_headers(cookies):
    """Headers for server-side page fetches: bearer from access_token plus backend session cookies only."""
    headers = {'Accept': 'application/json'}
    bearer = normalize_bearer(cookies.get('access_token') or cookies.get('Authorization'))
    if bearer:
        headers['Authorization'] = bearer
    parts = [f'{name}={cookies.get(name)}' for name in BACKEND_SESSION_COOKIES if cookies.get(name)]
    if parts:
        headers['Cookie'] = '; '.join(parts)
    return headers


def decode_jwt_payload(token):
    """Claims of a JWT without verifying the signature; None when unreadable."""
    if not token:
        return None
    if token.lower().startswith('bearer '):
        token = token[7:]
    parts = token.split('.')
    if len(parts) < 2:
        return None
    b64 = parts[1].replace('-', '+').replace('_', '/')
    padded = b64 + '=' * ((4 - len(b64) % 4) % 4)
    try:
        payload = json.loads(base64.b64decode(padded).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def shop_id_from_jwt(token):
    payload = decode_jwt_payload(token)
    if not payload:
        return None
    for key in ('shopID', 'shopId', 'shop_id', 'shop-id'):
        if payload.get(key) is not None:
            return str(payload[key])
    return None


def read_json(resp):
    try:
        return resp.json()
    except ValueError:
        return None


def unwrap_list(payload):
    """Accept the list shapes the backend uses: [...], data, data.content, content, orders, items."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    data = payload.get('data')
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get('content'), list):
        return data['content']
    for key in ('content', 'orders', 'items'):
        if isinstance(payload.get(key), list):
            return payload[key]
    return []


def unwrap_data(payload):
    if isinstance(payload, dict) and payload.get('data') is not None:
        return payload['data']
    return payload


class BackendClient:
    """Thin requests wrapper bound to the API origin."""

    def __init__(self, origin, timeout=30, http=None):
        self.origin = origin.rstrip('/')
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def host(self):
        return urlparse(self.origin).netloc

    def url(self, path):
        if re.match(r'^https?://', path, re.IGNORECASE):
            return path
        return self.origin + (path if path.startswith('/') else f'/{path}')

    def request(self, method, path, headers=None, params=None, data=None, json_body=None, files=None,
                allow_redirects=False, stream=False):
        url = self.url(path)
        try:
            resp = self.http.request(
                method,
                url,
                headers=headers or {},
                params=params,
                data=data,
                json=json_body,
                files=files,
                timeout=self.timeout,
                allow_redirects=allow_redirects,
                stream=stream,
            )
        except requests.RequestException as e:
            current_app.logger.warning(f"[UPSTREAM] {method} {url} failed: {e}")
            raise BackendError(f'Backend unreachable: {e}') from e

        if config.DEBUG_PROXY:
            preview = '' if stream else (resp.text or '')[:400]
            current_app.logger.info(f"[proxy] {method} {url} {resp.status_code} {resp.reason} {preview}")
        return resp

    def send_with_method_fallback(self, path, preferred, headers, body):
        """Try preferred, then PATCH, then POST.

        Moves on only when the backend says the route or method does not
        exist (404/405); the last attempt is returned whatever its status.
        """
        methods = []
        for m in (preferred, 'PATCH', 'POST'):
            if m not in methods:
                methods.append(m)

        resp = None
        for method in methods:
            resp = self.request(method, path, headers=headers, data=body if body else b'{}')
            if resp.ok or resp.status_code not in (404, 405):
                return resp
        return resp

    def fetch_page_json(self, path, cookies, return_to, params=None, not_found_ok=False):
        """GET for server-rendered pages.

        401/403 raise LoginRedirect; other failures raise BackendError,
        or return None when not_found_ok is set.
        """
        resp = self.request('GET', path, headers=build_page_headers(cookies), params=params)
        if resp.status_code in (401, 403):
            raise LoginRedirect(return_to)
        if not resp.ok:
            if not_found_ok:
                return None
            raise BackendError(f'Failed to load {path} ({resp.status_code})', resp.status_code, resp.text)
        return read_json(resp)


def get_backend():
    return current_app.extensions['backend']
