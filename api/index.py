"""
Vercel serverless entry point for SignalsLoop.

NOTE ON SQLITE + VERCEL:
Serverless functions only get a writable /tmp, so SQLite data does not
survive cold starts there. Set DATABASE_PATH=/tmp/signalsloop.db to try the
API on Vercel; for real deployments run the app under gunicorn on a host
with a persistent disk (see gunicorn.conf.py).

The scheduled jobs expect something to call /api/cron/orchestrator once a
minute with the CRON_SECRET bearer token (Vercel Cron or scripts/run_cron.py).
"""

import sys
import os

# Make the project root importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Import the Flask app object
from app import app

# Vercel expects a handler named `app` at module level
