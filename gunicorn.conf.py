import os

bind = f"0.0.0.0:{os.getenv('PORT', '10000')}"
# The cron orchestrator calls back into this server, so keep more than one
# worker thread free while it runs.
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
threads = int(os.getenv('GUNICORN_THREADS', '4'))
worker_class = 'gthread'
# Must outlast a full orchestrator pass (each job gets CRON_REQUEST_TIMEOUT seconds).
timeout = int(os.getenv('GUNICORN_TIMEOUT', '360'))
graceful_timeout = 30
keepalive = 5
max_requests = int(os.getenv('GUNICORN_MAX_REQUESTS', '1000'))
max_requests_jitter = 50
accesslog = '-'
errorlog = '-'
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
