#!/usr/bin/env python3
"""Send trial and billing lifecycle reminders to project owners.
Run daily from cron after exporting env vars.
"""

from __future__ import annotations

from app import app
from db import db_connect, rows_to_dicts
from services.billing import trial_info
from services.email_service import send_payment_warning_email, send_trial_reminder_email

REMINDER_DAYS = (3, 1)
WARNING_STATUSES = ('past_due', 'unpaid')


def _owner_rows(where: str, params=()):
    conn = db_connect(); cur = conn.cursor()
    cur.execute(
        f"""
        SELECT b.*, p.name AS project_name, u.email AS owner_email
        FROM billing_profiles b
        JOIN projects p ON p.id = b.project_id
        JOIN users u ON u.id = p.owner_id
        WHERE {where}
        """,
        params,
    )
    rows = rows_to_dicts(cur.fetchall()); conn.close()
    return rows


def send_trial_reminders():
    sent = 0
    for row in _owner_rows("b.is_trial = 1 AND b.trial_status = 'active'"):
        days_left = trial_info(row)['days_remaining']
        if days_left in REMINDER_DAYS:
            sent += int(send_trial_reminder_email(row['owner_email'], row['project_name'], days_left))
    return sent


def send_payment_warnings():
    sent = 0
    placeholders = ', '.join('?' for _ in WARNING_STATUSES)
    for row in _owner_rows(f"b.plan = 'pro' AND b.subscription_status IN ({placeholders})", WARNING_STATUSES):
        sent += int(send_payment_warning_email(row['owner_email'], row['project_name'], row['subscription_status']))
    return sent


if __name__ == '__main__':
    with app.app_context():
        reminders = send_trial_reminders()
        warnings = send_payment_warnings()
        print(f'Lifecycle emails processed: trial_reminders={reminders} payment_warnings={warnings}')
