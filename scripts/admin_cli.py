#!/usr/bin/env python3
"""Admin maintenance CLI for support operations."""

from __future__ import annotations

import argparse

from app import app
from db import db_connect
from services import billing, job_queue


def set_plan(project_id: int, plan: str, cycle: str | None):
    profile = billing.set_plan(project_id, plan, billing_cycle=cycle)
    print(f"project={project_id} plan={profile['plan']} billing_cycle={profile['billing_cycle']}")


def grant_gift(email: str, months: int, message: str | None):
    conn = db_connect(); cur = conn.cursor()
    cur.execute("SELECT id FROM users WHERE email = ?", (app.config['ADMIN_EMAIL'],))
    admin = cur.fetchone(); conn.close()
    gift = billing.create_gift(admin['id'] if admin else None, email.strip().lower(), months, message)
    print(f"gift_id={gift['id']} email_sent={gift['email_sent']} claim_link={gift['claim_link']}")


def recover_stale_jobs(minutes: int | None):
    print(f"recovered={job_queue.recover_stale_jobs(minutes)}")


def main():
    parser = argparse.ArgumentParser(description='SignalsLoop admin utility')
    sub = parser.add_subparsers(dest='cmd', required=True)

    p1 = sub.add_parser('set-plan')
    p1.add_argument('--project-id', type=int, required=True)
    p1.add_argument('--plan', required=True, choices=['free', 'pro'])
    p1.add_argument('--cycle', choices=['monthly', 'annual', 'manual'])

    p2 = sub.add_parser('grant-gift')
    p2.add_argument('--email', required=True)
    p2.add_argument('--months', type=int, required=True, choices=range(1, billing.MAX_GIFT_MONTHS + 1), metavar='MONTHS')
    p2.add_argument('--message')

    p3 = sub.add_parser('recover-stale-jobs')
    p3.add_argument('--minutes', type=int)

    args = parser.parse_args()

    with app.app_context():
        if args.cmd == 'set-plan':
            set_plan(args.project_id, args.plan, args.cycle)
        elif args.cmd == 'grant-gift':
            grant_gift(args.email, args.months, args.message)
        elif args.cmd == 'recover-stale-jobs':
            recover_stale_jobs(args.minutes)


if __name__ == '__main__':
    main()
