import os
import traceback

from flask import Flask, render_template, redirect, url_for
from flask_compress import Compress
from whitenoise import WhiteNoise
from werkzeug.middleware.proxy_fix import ProxyFix

import config
from services.backend_client import BackendClient, BackendError, LoginRedirect
from services.rate_limit import init_limiter
from services import context_processors

# Initialize Flask app
app = Flask(__name__)

# 1. Gzip compression
Compress(app)

# 2. WhiteNoise for static files
app.wsgi_app = WhiteNoise(
    app.wsgi_app,
    root='static/',
    prefix='static/',
    autorefresh=not config.IS_PRODUCTION,
    max_age=31536000 if config.IS_PRODUCTION else 0,
)

# Secret key from environment (required in production)
app.secret_key = os.environ.get('SECRET_KEY')
if not app.secret_key:
    if config.IS_PRODUCTION:
        raise ValueError("SECRET_KEY environment variable must be set in production!")
    app.secret_key = 'dev-secret-key-CHANGE-IN-PRODUCTION'
    print("[WARN] Using development secret key. Set SECRET_KEY environment variable for production!")

# The wizard state rides in this cookie
app.config['SESSION_COOKIE_NAME'] = 'tb_session'
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['SESSION_COOKIE_SECURE'] = config.IS_PRODUCTION

# Behind a load balancer
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

# Upstream REST backend
app.extensions['backend'] = BackendClient(config.API_ORIGIN, timeout=config.UPSTREAM_TIMEOUT)

# Blueprints
from apps.auth import auth_bp
app.register_blueprint(auth_bp)

from apps.dashboard import dashboard_bp
app.register_blueprint(dashboard_bp)

from apps.customer_pages import customer_pages_bp
app.register_blueprint(customer_pages_bp)

from apps.order_create import order_create_bp
app.register_blueprint(order_create_bp)

from apps.order_edit import order_edit_bp
app.register_blueprint(order_edit_bp)

from apps.order_pages import order_pages_bp
app.register_blueprint(order_pages_bp)

from apps.api.proxy import proxy_bp, passthrough_bp
app.register_blueprint(proxy_bp)
app.register_blueprint(passthrough_bp)

context_processors.register(app)

limiter = init_limiter(app)


@app.errorhandler(LoginRedirect)
def backend_auth_failed(e):
    return redirect(url_for('auth.login', redirect=e.return_to))


@app.errorhandler(BackendError)
def backend_failed(e):
    app.logger.error(f"[UPSTREAM] {e.message} (status {e.status})")
    return render_template('error.html', message=e.message, status=e.status), 502


@app.errorhandler(404)
def not_found(error):
    return render_template('404.html'), 404


# Error handler with production safety
@app.errorhandler(500)
def internal_error(error):
    # Only show detailed errors in development
    if app.debug or not config.IS_PRODUCTION:
        return f"<pre>500 Error: {str(error)}\n\n{traceback.format_exc()}</pre>", 500
    app.logger.error(f"Internal Server Error: {str(error)}\n{traceback.format_exc()}")
    return render_template('error.html', message='Something went wrong.', status=500), 500


if __name__ == '__main__':
    from run import main
    main()
