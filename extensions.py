"""
Flask extension instances shared by the application and its blueprints.
Bound to the app in app.py via init_app.
"""

from flask import current_app
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect

csrf = CSRFProtect()

limiter = Limiter(
    key_func=get_remote_address,
    strategy='fixed-window',
    default_limits=["2000 per day", "300 per hour"],
)

login_manager = LoginManager()


@limiter.request_filter
def _rate_limit_exempt_for_tests():
    return current_app.config.get('TESTING', False)
