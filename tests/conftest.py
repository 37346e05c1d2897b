"""Pytest fixtures for the TailorBook front."""
import json
import os
from urllib.parse import urlparse, parse_qs

import pytest
import requests
from requests.structures import CaseInsensitiveDict

# 1. Set environment BEFORE importing app/config
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["TAILORAPP_API"] = "http://backend.test/api/"
os.environ.pop("FLASK_ENV", None)
os.environ["FLASK_DEFAULT_RATE_LIMITS"] = "100000 per hour"

from app import app as flask_app

BACKEND = "http://backend.test"


def make_response(status=200, json_body=None, text=None, content=None, headers=None, url=BACKEND):
    """A real requests.Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = 'utf-8'
    ctype = None
    if json_body is not None:
        content = json.dumps(json_body).encode('utf-8')
        ctype = 'application/json'
    elif text is not None:
        content = text.encode('utf-8')
        ctype = 'text/plain'
    resp._content = content or b''
    resp.headers = CaseInsensitiveDict()
    if ctype:
        resp.headers['Content-Type'] = ctype
    resp.headers.update(headers or {})
    return resp


class FakeUpstream:
    """Stands in for the backend's requests.Session: records calls, answers from queued routes.

    A queued exception is raised instead of answered, like a transport failure.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, *responses):
        self.routes.setdefault((method.upper(), path), []).extend(responses)

    def request(self, method, url, **kwargs):
        parsed = urlparse(url)
        call = {
            'method': method.upper(),
            'url': url,
            'host': parsed.netloc,
            'path': parsed.path,
            'query': parse_qs(parsed.query),
            'headers': dict(kwargs.get('headers') or {}),
            'params': kwargs.get('params'),
            'data': kwargs.get('data'),
            'json': kwargs.get('json'),
            'files': kwargs.get('files'),
            'allow_redirects': kwargs.get('allow_redirects'),
        }
        self.calls.append(call)
        queue = self.routes.get((call['method'], parsed.path)) or self.routes.get(('*', parsed.path))
        if not queue:
            return make_response(404, json_body={'message': 'no fake route'}, url=url)
        # the last queued response keeps answering
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    def calls_to(self, path, method=None):
        return [c for c in self.calls if c['path'] == path and (method is None or c['method'] == method)]


@pytest.fixture
def app():
    """Flask app with TESTING config."""
    flask_app.config["TESTING"] = True
    yield flask_app


@pytest.fixture
def upstream(app, monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr(app.extensions['backend'], 'http', fake)
    return fake


@pytest.fixture
def client(app, upstream):
    """Test client; every backend call goes to the fake upstream."""
    return app.test_client()


@pytest.fixture
def login(client):
    """Client carrying an access token cookie, as after a successful login."""
    client.set_cookie('access_token', 'tok-123')
    client.set_cookie('shop_id', '7')
    return client
