"""Scheduled endpoints, all protected by the cron secret."""

from flask import Blueprint, jsonify, request

from services import hunter, job_queue
from services.access import cron_secret_required
from services.billing import expire_plans
from services.orchestrator import recent_runs, run_cron_jobs

cron_bp = Blueprint('cron', __name__, url_prefix='/api/cron')


@cron_bp.route('/orchestrator', methods=['GET', 'POST'])
@cron_secret_required
def orchestrator():
    summary = run_cron_jobs(base_url=request.host_url)
    return jsonify(summary)


@cron_bp.route('/runs')
@cron_secret_required
def runs():
    limit = min(max(request.args.get('limit', 50, type=int), 1), 200)
    return jsonify({'runs': recent_runs(limit)})


@cron_bp.route('/process-feedback', methods=['GET', 'POST'])
@cron_secret_required
def process_feedback():
    return jsonify(hunter.process_pending_feedback())


@cron_bp.route('/recover-stale-jobs', methods=['GET', 'POST'])
@cron_secret_required
def recover_stale_jobs():
    return jsonify({'recovered': job_queue.recover_stale_jobs()})


@cron_bp.route('/expire-trials', methods=['GET', 'POST'])
@cron_secret_required
def expire_trials():
    return jsonify(expire_plans())
