"""Hunter scan bookkeeping and the table-backed job queue polled by the workers."""

import logging
from datetime import timedelta

from flask import current_app

from db import db_connect, from_json, parse_ts, row_to_dict, rows_to_dicts, to_json, utcnow, utcnow_iso
from services.email_service import send_scan_complete_email

logger = logging.getLogger(__name__)

JOB_TYPES = ('discovery', 'relevance', 'classify')
PLATFORMS = ('reddit', 'hackernews')
RETRY_DELAY_SECONDS = 60
CLAIM_CANDIDATES = 20

# Platform progress inside a scan; a platform never moves back down this list
# except into 'failed'.
STATUS_PRIORITY = {
    'pending': 0,
    'queued': 1,
    'discovering': 2,
    'filtering': 3,
    'filtered': 3,
    'classifying': 4,
    'complete': 5,
    'failed': 6,
}

SCAN_JSON_FIELDS = ('platforms', 'platform_status')


def get_scan(scan_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM hunter_scans WHERE id = ?', (scan_id,))
    scan = row_to_dict(c.fetchone(), json_fields=SCAN_JSON_FIELDS)
    conn.close()
    return scan


def list_scans(project_id, limit=20):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT * FROM hunter_scans WHERE project_id = ? ORDER BY id DESC LIMIT ?',
        (project_id, limit),
    )
    scans = rows_to_dicts(c.fetchall(), json_fields=SCAN_JSON_FIELDS)
    conn.close()
    return scans


def _insert_job(c, scan_id, project_id, job_type, platform):
    c.execute(
        '''
        INSERT INTO hunter_jobs (scan_id, project_id, job_type, platform, status, created_at)
        VALUES (?, ?, ?, ?, 'pending', ?)
        ''',
        (scan_id, project_id, job_type, platform, utcnow_iso()),
    )
    return c.lastrowid


def create_scan(project_id, platforms, triggered_by=None):
    """Open a scan and queue one discovery job per platform."""
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO hunter_scans (project_id, status, platforms, platform_status, triggered_by, started_at)
        VALUES (?, 'running', ?, ?, ?, ?)
        ''',
        (
            project_id,
            to_json(list(platforms)),
            to_json({platform: 'queued' for platform in platforms}),
            triggered_by,
            now,
        ),
    )
    scan_id = c.lastrowid
    for platform in platforms:
        _insert_job(c, scan_id, project_id, 'discovery', platform)
    conn.commit()
    conn.close()

    logger.info('Hunter scan %s started for project %s (%s)', scan_id, project_id, ', '.join(platforms))
    return get_scan(scan_id)


def enqueue_job(scan_id, project_id, job_type, platform):
    if job_type not in JOB_TYPES:
        raise ValueError(f'Unknown job type: {job_type}')
    conn = db_connect()
    c = conn.cursor()
    job_id = _insert_job(c, scan_id, project_id, job_type, platform)
    conn.commit()
    conn.close()
    return job_id


def claim_job(job_type, worker_id):
    """Take the oldest due pending job of ``job_type``; None when the queue is empty.

    The conditional UPDATE only succeeds for one worker per row, so two
    workers polling at once cannot both claim the same job.
    """
    now = utcnow().isoformat()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT id FROM hunter_jobs
        WHERE job_type = ? AND status = 'pending'
          AND (next_retry_at IS NULL OR next_retry_at <= ?)
        ORDER BY created_at, id
        LIMIT ?
        ''',
        (job_type, now, CLAIM_CANDIDATES),
    )
    candidates = c.fetchall()

    job = None
    for candidate in candidates:
        c.execute(
            '''
            UPDATE hunter_jobs
            SET status = 'processing', locked_by = ?, locked_at = ?, started_at = ?,
                attempts = attempts + 1
            WHERE id = ? AND status = 'pending'
            ''',
            (worker_id, now, now, candidate['id']),
        )
        if c.rowcount:
            conn.commit()
            c.execute('SELECT * FROM hunter_jobs WHERE id = ?', (candidate['id'],))
            job = row_to_dict(c.fetchone())
            break

    conn.close()
    if job:
        logger.info('Worker %s claimed %s job %s (attempt %s)', worker_id, job_type, job['id'], job['attempts'])
    return job


def complete_job(job_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        UPDATE hunter_jobs
        SET status = 'complete', completed_at = ?, locked_by = NULL, locked_at = NULL, error = NULL
        WHERE id = ?
        ''',
        (utcnow_iso(), job_id),
    )
    conn.commit()
    conn.close()


def fail_job(job_id, error):
    """Record a failure; the job is retried after ``attempts`` minutes until max_attempts."""
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT attempts, max_attempts FROM hunter_jobs WHERE id = ?', (job_id,))
    row = c.fetchone()
    if not row:
        conn.close()
        return None

    message = str(error)[:1000]
    if row['attempts'] < row['max_attempts']:
        retry_at = utcnow() + timedelta(seconds=RETRY_DELAY_SECONDS * row['attempts'])
        c.execute(
            '''
            UPDATE hunter_jobs
            SET status = 'pending', error = ?, next_retry_at = ?, locked_by = NULL, locked_at = NULL
            WHERE id = ?
            ''',
            (message, retry_at.isoformat(), job_id),
        )
        status = 'pending'
    else:
        c.execute(
            '''
            UPDATE hunter_jobs
            SET status = 'failed', error = ?, completed_at = ?, locked_by = NULL, locked_at = NULL
            WHERE id = ?
            ''',
            (message, utcnow_iso(), job_id),
        )
        status = 'failed'
    conn.commit()
    conn.close()

    logger.warning('Hunter job %s failed (attempt %s/%s): %s', job_id, row['attempts'], row['max_attempts'], message)
    return status


def recover_stale_jobs(stale_minutes=None):
    """Return processing jobs whose lock outlived the stale timeout to the queue.

    Jobs that already used all their attempts are failed instead, and their
    platform and scan are settled the same way a failing worker settles them.
    """
    if stale_minutes is None:
        stale_minutes = current_app.config.get('HUNTER_STALE_MINUTES', 10)
    cutoff = utcnow() - timedelta(minutes=stale_minutes)

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        "SELECT id, scan_id, platform, attempts, max_attempts, locked_at FROM hunter_jobs WHERE status = 'processing'"
    )
    stale = [
        row for row in c.fetchall()
        if parse_ts(row['locked_at']) is None or parse_ts(row['locked_at']) < cutoff
    ]
    exhausted = []
    for row in stale:
        if row['attempts'] >= row['max_attempts']:
            c.execute(
                '''
                UPDATE hunter_jobs
                SET status = 'failed', locked_by = NULL, locked_at = NULL, completed_at = ?,
                    error = 'Stale lock after final attempt'
                WHERE id = ? AND status = 'processing'
                ''',
                (utcnow_iso(), row['id']),
            )
            if c.rowcount:
                exhausted.append(row)
        else:
            c.execute(
                '''
                UPDATE hunter_jobs
                SET status = 'pending', locked_by = NULL, locked_at = NULL,
                    error = 'Recovered after stale lock'
                WHERE id = ? AND status = 'processing'
                ''',
                (row['id'],),
            )
    conn.commit()
    conn.close()

    for row in exhausted:
        set_platform_status(row['scan_id'], row['platform'], 'failed')
        check_scan_completion(row['scan_id'])

    if stale:
        logger.warning('Recovered %s stale hunter jobs (%s failed)', len(stale), len(exhausted))
    return len(stale)


def set_platform_status(scan_id, platform, status):
    """Advance one platform's status inside a scan. Returns False for backward moves."""
    if status not in STATUS_PRIORITY:
        raise ValueError(f'Unknown platform status: {status}')
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT platform_status FROM hunter_scans WHERE id = ?', (scan_id,))
    row = c.fetchone()
    if not row:
        conn.close()
        return False

    statuses = from_json(row['platform_status'], {})
    current = statuses.get(platform, 'pending')
    if STATUS_PRIORITY[status] < STATUS_PRIORITY.get(current, 0) and status != 'failed':
        conn.close()
        logger.debug('Ignoring backward status for scan %s: %s %s -> %s', scan_id, platform, current, status)
        return False

    statuses[platform] = status
    c.execute('UPDATE hunter_scans SET platform_status = ? WHERE id = ?', (to_json(statuses), scan_id))
    conn.commit()
    conn.close()
    return True


def increment_scan_counter(scan_id, field, amount):
    if field not in ('total_discovered', 'total_relevant', 'total_classified'):
        raise ValueError(f'Unknown scan counter: {field}')
    conn = db_connect()
    c = conn.cursor()
    c.execute(f'UPDATE hunter_scans SET {field} = {field} + ? WHERE id = ?', (amount, scan_id))
    conn.commit()
    conn.close()


def final_scan_status(platform_status):
    statuses = list(platform_status.values())
    if statuses and all(s == 'complete' for s in statuses):
        return 'complete'
    if any(s == 'complete' for s in statuses):
        return 'partial'
    return 'failed'


def check_scan_completion(scan_id):
    """Close the scan once none of its jobs are pending or processing.

    Returns the final status, or None while work remains.
    """
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM hunter_scans WHERE id = ?', (scan_id,))
    scan = row_to_dict(c.fetchone(), json_fields=SCAN_JSON_FIELDS)
    if not scan or scan['status'] != 'running':
        conn.close()
        return None

    c.execute(
        "SELECT COUNT(*) FROM hunter_jobs WHERE scan_id = ? AND status IN ('pending', 'processing')",
        (scan_id,),
    )
    if c.fetchone()[0]:
        conn.close()
        return None

    status = final_scan_status(scan['platform_status'])
    completed_at = utcnow_iso()
    c.execute(
        "UPDATE hunter_scans SET status = ?, completed_at = ? WHERE id = ? AND status = 'running'",
        (status, completed_at, scan_id),
    )
    updated = c.rowcount
    conn.commit()
    c.execute(
        '''
        SELECT p.name AS project_name, u.email AS owner_email
        FROM projects p JOIN users u ON u.id = p.owner_id
        WHERE p.id = ?
        ''',
        (scan['project_id'],),
    )
    owner = c.fetchone()
    conn.close()

    if not updated:
        return None

    scan.update(status=status, completed_at=completed_at)
    logger.info(
        'Hunter scan %s finished: %s (discovered=%s relevant=%s classified=%s)',
        scan_id, status, scan['total_discovered'], scan['total_relevant'], scan['total_classified'],
    )
    if owner and current_app.config.get('MAIL_ENABLED'):
        send_scan_complete_email(owner['owner_email'], owner['project_name'], scan)
    return status
