"""
Configuration classes for the SignalsLoop application
Loads settings from environment variables
"""

import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        raise RuntimeError("SECRET_KEY environment variable must be set")

    APP_ENV = os.environ.get('APP_ENV', 'production')
    DEBUG = os.environ.get('FLASK_ENV') == 'development' or os.environ.get('FLASK_DEBUG') == '1'
    SITE_URL = os.environ.get('SITE_URL', 'http://localhost:5000').rstrip('/')

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    SESSION_COOKIE_SECURE = os.environ.get('SESSION_COOKIE_SECURE', '1') == '1'

    # Database
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or 'signalsloop.db'

    # Admin credentials
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL') or 'admin@signalsloop.local'
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or 'changeme123'

    # Cron
    CRON_SECRET = os.environ.get('CRON_SECRET')
    CRON_REQUEST_TIMEOUT = int(os.environ.get('CRON_REQUEST_TIMEOUT', '55'))

    # LLM completions
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-4o-mini')
    PRIORITY_MODEL = os.environ.get('PRIORITY_MODEL', 'gpt-4o-mini')
    LLM_TIMEOUT = float(os.environ.get('LLM_TIMEOUT', '30'))

    # AI usage limits (calls per project per calendar month)
    AI_LIMIT_FREE = int(os.environ.get('AI_LIMIT_FREE', '25'))
    AI_LIMIT_PRO = int(os.environ.get('AI_LIMIT_PRO', '1000'))

    # Stripe configuration
    STRIPE_PUBLISHABLE_KEY = os.environ.get('STRIPE_PUBLISHABLE_KEY')
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')

    # Stripe Price IDs
    STRIPE_PRICE_ID_MONTHLY = os.environ.get('STRIPE_PRICE_ID_MONTHLY')
    STRIPE_PRICE_ID_ANNUAL = os.environ.get('STRIPE_PRICE_ID_ANNUAL')

    # Pricing / trials
    TRIAL_DAYS = int(os.environ.get('TRIAL_DAYS', 14))
    MONTHLY_SUBSCRIPTION_PRICE = int(os.environ.get('MONTHLY_SUBSCRIPTION_PRICE', 19))
    ANNUAL_SUBSCRIPTION_PRICE = int(os.environ.get('ANNUAL_SUBSCRIPTION_PRICE', 190))

    # Feedback hunter
    HUNTER_DISCOVERY_LIMIT = int(os.environ.get('HUNTER_DISCOVERY_LIMIT', '25'))
    HUNTER_RELEVANCE_BATCH = int(os.environ.get('HUNTER_RELEVANCE_BATCH', '15'))
    HUNTER_CLASSIFY_BATCH = int(os.environ.get('HUNTER_CLASSIFY_BATCH', '5'))
    HUNTER_STALE_MINUTES = int(os.environ.get('HUNTER_STALE_MINUTES', '10'))
    HUNTER_USER_AGENT = os.environ.get('HUNTER_USER_AGENT', 'SignalsLoopHunter/1.0')
    PROCESS_FEEDBACK_BATCH = int(os.environ.get('PROCESS_FEEDBACK_BATCH', '10'))

    # Outbound webhooks
    WEBHOOK_TIMEOUT = float(os.environ.get('WEBHOOK_TIMEOUT', '10'))
    WEBHOOK_MAX_FAILURES = int(os.environ.get('WEBHOOK_MAX_FAILURES', '10'))

    # Mail configuration
    MAIL_ENABLED = os.environ.get('MAIL_ENABLED', '0') == '1'
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'smtp.sendgrid.net')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = os.environ.get('MAIL_USE_TLS', '1') == '1'
    MAIL_USE_SSL = os.environ.get('MAIL_USE_SSL', '0') == '1'
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'no-reply@signalsloop.com')
    MAIL_MAX_RETRIES = int(os.environ.get('MAIL_MAX_RETRIES', '3'))

    # Monitoring / logging
    SENTRY_DSN = os.environ.get('SENTRY_DSN')
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
