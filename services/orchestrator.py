"""Cron orchestrator: calls each scheduled internal endpoint in order and records the outcome."""

import logging
import time
import uuid

import requests
from flask import current_app

from db import db_connect, rows_to_dicts, utcnow_iso

logger = logging.getLogger(__name__)

# Order matters: discovery feeds relevance, which feeds classify.
CRON_JOBS = (
    '/api/hunter/worker/discovery',
    '/api/hunter/worker/relevance',
    '/api/hunter/worker/classify',
    '/api/cron/process-feedback',
    '/api/cron/recover-stale-jobs',
    '/api/cron/expire-trials',
)


def _record_run(run_id, job_path, status_code, success, duration_ms, error):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO cron_runs (run_id, job_path, status_code, success, duration_ms, error, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ''',
        (run_id, job_path, status_code, int(success), duration_ms, error, utcnow_iso()),
    )
    conn.commit()
    conn.close()


def run_cron_jobs(base_url=None, jobs=CRON_JOBS):
    """Call every job sequentially. A failing job is logged and the run moves on."""
    secret = current_app.config.get('CRON_SECRET')
    if not secret:
        raise RuntimeError('CRON_SECRET is not configured')
    base_url = (base_url or current_app.config.get('SITE_URL', '')).rstrip('/')
    timeout = current_app.config.get('CRON_REQUEST_TIMEOUT', 55)
    run_id = uuid.uuid4().hex
    results = []

    for job_path in jobs:
        started = time.perf_counter()
        status_code = None
        error = None
        try:
            response = requests.get(
                f'{base_url}{job_path}',
                headers={'Authorization': f'Bearer {secret}'},
                timeout=timeout,
            )
            status_code = response.status_code
            if status_code >= 400:
                error = f'HTTP {status_code}: {response.text[:300]}'
        except requests.RequestException as exc:
            error = str(exc)[:500]
        duration_ms = int((time.perf_counter() - started) * 1000)
        success = error is None

        _record_run(run_id, job_path, status_code, success, duration_ms, error)
        if success:
            logger.info('Cron job %s ok in %sms', job_path, duration_ms)
        else:
            logger.error('Cron job %s failed in %sms: %s', job_path, duration_ms, error)
        results.append({
            'job': job_path,
            'status_code': status_code,
            'success': success,
            'duration_ms': duration_ms,
            'error': error,
        })

    succeeded = sum(1 for r in results if r['success'])
    return {
        'run_id': run_id,
        'total': len(results),
        'succeeded': succeeded,
        'failed': len(results) - succeeded,
        'results': results,
    }


def recent_runs(limit=50):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM cron_runs ORDER BY id DESC LIMIT ?', (limit,))
    runs = rows_to_dicts(c.fetchall())
    conn.close()
    for run in runs:
        run['success'] = bool(run['success'])
    return runs
