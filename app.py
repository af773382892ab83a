"""
SignalsLoop - Flask Application
Application bootstrap, account routes, health/metrics endpoints and JSON error handling.
Feature routes live in the blueprints under routes/.
"""

import os
import re
from datetime import datetime, timedelta, timezone
from time import perf_counter
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask, request, jsonify
from flask_login import (
    UserMixin,
    login_user,
    logout_user,
    login_required,
    current_user,
)
from flask_wtf.csrf import generate_csrf
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from email.utils import parseaddr
import stripe
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration

from config import Config
from db import db_connect, init_db, utcnow_iso
from extensions import csrf, limiter, login_manager
from services.billing import AIQuotaExceeded
from services.email_service import init_mail, send_welcome_email
from services.text import clean_text
from routes.billing import billing_bp
from routes.boards import boards_bp, public_bp, sdk_bp
from routes.competitive import competitive_bp
from routes.cron import cron_bp
from routes.experiments import experiments_bp, experiments_sdk_bp
from routes.hunter import hunter_bp, hunter_worker_bp
from routes.mission_control import mission_control_bp
from routes.surveys import surveys_bp, surveys_public_bp
from routes.themes import themes_bp
from routes.webhooks import webhooks_bp

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)
app.config.setdefault('SESSION_COOKIE_SECURE', not app.config.get('DEBUG', False))
app.json.sort_keys = False

# Initialize CSRF protection, rate limiting and login sessions
csrf.init_app(app)
limiter.init_app(app)
login_manager.init_app(app)

# Initialize email service
init_mail(app)

os.makedirs(app.config.get('LOG_DIR', 'logs'), exist_ok=True)
_file_handler = RotatingFileHandler(
    os.path.join(app.config.get('LOG_DIR', 'logs'), 'app.log'),
    maxBytes=5 * 1024 * 1024,
    backupCount=5,
)
_file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
    app.logger.addHandler(_file_handler)
logging.getLogger('services').addHandler(_file_handler)
logging.getLogger('services').setLevel(app.config.get('LOG_LEVEL', 'INFO'))

if app.config.get('SENTRY_DSN'):
    sentry_sdk.init(
        dsn=app.config.get('SENTRY_DSN'),
        integrations=[FlaskIntegration()],
        traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
        environment=app.config.get('APP_ENV'),
    )

# Configure Stripe
stripe.api_key = app.config.get('STRIPE_SECRET_KEY')

MAX_NAME_LENGTH = 120
EMAIL_REGEX = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

REQUEST_METRICS = {
    'requests_total': 0,
    'errors_total': 0,
    'latency_ms_total': 0.0,
}


@app.before_request
def _metrics_before_request():
    request._start_ts = perf_counter()


@app.after_request
def _metrics_after_request(response):
    started = getattr(request, '_start_ts', None)
    if started is not None:
        REQUEST_METRICS['requests_total'] += 1
        elapsed = (perf_counter() - started) * 1000.0
        REQUEST_METRICS['latency_ms_total'] += elapsed
        if response.status_code >= 400:
            REQUEST_METRICS['errors_total'] += 1
    return response


def is_valid_email(email):
    if not email:
        return False
    _, parsed = parseaddr(email)
    return bool(parsed and EMAIL_REGEX.match(parsed) and len(parsed) <= 254)


def validate_password_strength(password):
    if not password or len(password) < 8:
        return False, 'Password must be at least 8 characters long.'
    if not re.search(r'[A-Z]', password):
        return False, 'Password must include at least one uppercase letter.'
    if not re.search(r'[a-z]', password):
        return False, 'Password must include at least one lowercase letter.'
    if not re.search(r'\d', password):
        return False, 'Password must include at least one number.'
    return True, ''


class User(UserMixin):
    def __init__(self, id, email, name=None, is_admin=False, created_at=None):
        self.id = id
        self.email = email
        self.name = name
        self.is_admin = bool(is_admin)
        self.created_at = created_at

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'is_admin': self.is_admin,
            'created_at': self.created_at,
        }


@login_manager.user_loader
def load_user(user_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT id, email, name, is_admin, created_at FROM users WHERE id = ?',
        (user_id,),
    )
    user_data = c.fetchone()
    conn.close()

    if user_data:
        return User(
            id=user_data['id'],
            email=user_data['email'],
            name=user_data['name'],
            is_admin=user_data['is_admin'],
            created_at=user_data['created_at'],
        )
    return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required'}), 401


# ===== BLUEPRINTS =====

for blueprint in (
    boards_bp,
    themes_bp,
    experiments_bp,
    surveys_bp,
    webhooks_bp,
    billing_bp,
    hunter_bp,
    competitive_bp,
    mission_control_bp,
):
    app.register_blueprint(blueprint)

# Machine-to-machine endpoints authenticate with API keys, signatures or the cron secret
for blueprint in (public_bp, sdk_bp, experiments_sdk_bp, surveys_public_bp, hunter_worker_bp, cron_bp):
    csrf.exempt(blueprint)
    app.register_blueprint(blueprint)


# ===== ACCOUNT ROUTES =====

@app.route('/api/auth/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@app.route('/api/auth/register', methods=['POST'])
@limiter.limit('5 per hour')
def register():
    """Create an account and sign it in."""
    data = request.get_json(silent=True) or {}
    errors = {}
    email = (data.get('email') or '').strip().lower()
    name = clean_text(data.get('name'))
    password = data.get('password') or ''

    if not is_valid_email(email):
        errors['email'] = 'Enter a valid email address.'
    if name and len(name) > MAX_NAME_LENGTH:
        errors['name'] = f'Name must be at most {MAX_NAME_LENGTH} characters.'
    ok_password, password_msg = validate_password_strength(password)
    if not ok_password:
        errors['password'] = password_msg

    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id FROM users WHERE email = ?', (email,))
    if c.fetchone():
        conn.close()
        return jsonify({'error': 'An account with that email already exists'}), 409

    created_at = utcnow_iso()
    c.execute(
        '''
        INSERT INTO users (email, name, password_hash, is_admin, created_at)
        VALUES (?, ?, ?, 0, ?)
        ''',
        (email, name or None, generate_password_hash(password), created_at),
    )
    user_id = c.lastrowid
    conn.commit()
    conn.close()

    user = User(id=user_id, email=email, name=name or None, is_admin=False, created_at=created_at)
    login_user(user)
    app.logger.info('User registered: id=%s', user_id)

    if app.config.get('MAIL_ENABLED'):
        send_welcome_email(email, name or email)

    return jsonify({'user': user.to_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
@limiter.limit('5 per 15 minutes')
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password are required'}), 400

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id, password_hash FROM users WHERE email = ?', (email,))
    user_data = c.fetchone()
    conn.close()

    if user_data and check_password_hash(user_data['password_hash'], password):
        user = load_user(user_data['id'])
        if user:
            login_user(user, remember=bool(data.get('remember')))
            return jsonify({'user': user.to_dict()}), 200

    app.logger.warning('Failed sign-in for %s', email)
    return jsonify({'error': 'Invalid email or password'}), 401


@app.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return '', 204


@app.route('/api/auth/me')
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})


# ===== OPERATIONS =====

@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'service': 'signalsloop'}), 200


@app.route('/metrics')
def metrics():
    total = REQUEST_METRICS['requests_total']
    avg_latency = (REQUEST_METRICS['latency_ms_total'] / total) if total else 0.0
    return jsonify({
        'requests_total': total,
        'errors_total': REQUEST_METRICS['errors_total'],
        'avg_latency_ms': round(avg_latency, 2),
    }), 200


# ===== ERROR HANDLERS =====


@app.errorhandler(429)
def rate_limited(error):
    reset_ts = int((datetime.now(timezone.utc) + timedelta(minutes=15)).timestamp())
    resp = jsonify({'error': 'Too many requests', 'retry_after_minutes': 15})
    resp.status_code = 429
    resp.headers['X-RateLimit-Reset'] = str(reset_ts)
    return resp


@app.errorhandler(AIQuotaExceeded)
def ai_quota_exceeded(error):
    return jsonify({
        'error': str(error),
        'plan': error.plan,
        'used': error.used,
        'limit': error.limit,
    }), 429


@app.errorhandler(HTTPException)
def http_error(error):
    return jsonify({'error': error.description}), error.code


@app.errorhandler(Exception)
def internal_error(error):
    app.logger.exception('Unhandled error on %s %s', request.method, request.path)
    return jsonify({'error': 'Internal server error'}), 500


# ===== APPLICATION ENTRY POINT =====

if __name__ == '__main__':
    with app.app_context():
        init_db()
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config['DEBUG'])
