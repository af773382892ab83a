"""Feedback hunter routes: project config, scans, the discovered feed and cron workers."""

import uuid

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from services import hunter, job_queue
from services.access import WRITE_ROLES, cron_secret_required, require_project_access

hunter_bp = Blueprint('hunter', __name__, url_prefix='/api')
hunter_worker_bp = Blueprint('hunter_worker', __name__, url_prefix='/api/hunter/worker')

MAX_FEED_LIMIT = 100


@hunter_bp.route('/projects/<int:project_id>/hunter/config')
@login_required
def get_config(project_id):
    require_project_access(project_id)
    return jsonify({'config': hunter.get_config(project_id)})


@hunter_bp.route('/projects/<int:project_id>/hunter/config', methods=['PUT'])
@login_required
def save_config(project_id):
    require_project_access(project_id, WRITE_ROLES)
    cleaned, errors = hunter.validate_config_input(request.get_json(silent=True) or {})
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    return jsonify({'config': hunter.save_config(project_id, cleaned)})


@hunter_bp.route('/projects/<int:project_id>/hunter/scans', methods=['POST'])
@login_required
def start_scan(project_id):
    require_project_access(project_id, WRITE_ROLES)
    scan = hunter.start_scan(project_id, current_user.id)
    return jsonify({'scan': scan}), 201


@hunter_bp.route('/projects/<int:project_id>/hunter/scans')
@login_required
def list_scans(project_id):
    require_project_access(project_id)
    return jsonify({'scans': job_queue.list_scans(project_id)})


@hunter_bp.route('/projects/<int:project_id>/hunter/scans/<int:scan_id>')
@login_required
def get_scan(project_id, scan_id):
    require_project_access(project_id)
    scan = job_queue.get_scan(scan_id)
    if not scan or scan['project_id'] != project_id:
        abort(404, description='Scan not found')
    return jsonify({'scan': scan})


@hunter_bp.route('/projects/<int:project_id>/hunter/feed')
@login_required
def feed(project_id):
    require_project_access(project_id)
    classification = request.args.get('classification')
    if classification and classification not in hunter.CLASSIFICATIONS:
        abort(400, description=f"classification must be one of: {', '.join(hunter.CLASSIFICATIONS)}")
    platform = request.args.get('platform')
    if platform and platform not in job_queue.PLATFORMS:
        abort(400, description=f"platform must be one of: {', '.join(job_queue.PLATFORMS)}")

    needs_review = request.args.get('needs_review')
    if needs_review is not None:
        needs_review = needs_review.lower() in ('1', 'true', 'yes')
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    if limit < 1 or limit > MAX_FEED_LIMIT or offset < 0:
        abort(400, description=f'limit must be 1-{MAX_FEED_LIMIT} and offset must be >= 0')

    items, counts = hunter.list_feed(
        project_id,
        classification=classification,
        platform=platform,
        needs_review=needs_review,
        include_archived=request.args.get('include_archived') == '1',
        limit=limit,
        offset=offset,
    )
    return jsonify({'items': items, 'classification_counts': counts, 'limit': limit, 'offset': offset})


@hunter_bp.route('/hunter/feed/<int:feedback_id>/<action>', methods=['POST'])
@login_required
def feed_action(feedback_id, action):
    item = hunter.get_feedback_item(feedback_id)
    require_project_access(item['project_id'], WRITE_ROLES)
    item, post = hunter.apply_feed_action(item, action, current_user.id)
    return jsonify({'item': item, 'post': post})


# ===== WORKERS =====

def _run_worker(job_type):
    worker_id = f'{job_type}-{uuid.uuid4().hex[:8]}'
    return jsonify(hunter.process_next_job(job_type, worker_id))


@hunter_worker_bp.route('/discovery', methods=['GET', 'POST'])
@cron_secret_required
def discovery_worker():
    return _run_worker('discovery')


@hunter_worker_bp.route('/relevance', methods=['GET', 'POST'])
@cron_secret_required
def relevance_worker():
    return _run_worker('relevance')


@hunter_worker_bp.route('/classify', methods=['GET', 'POST'])
@cron_secret_required
def classify_worker():
    return _run_worker('classify')
