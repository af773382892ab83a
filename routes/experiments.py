"""A/B experiment management routes plus the API-key SDK used by client sites."""

from flask import Blueprint, abort, g, jsonify, request
from flask_login import current_user, login_required

from extensions import limiter
from services import experiments
from services.access import WRITE_ROLES, api_key_required, require_project_access

experiments_bp = Blueprint('experiments', __name__, url_prefix='/api')
experiments_sdk_bp = Blueprint('experiments_sdk', __name__, url_prefix='/api/v1/experiments')

MAX_VISITOR_ID_LENGTH = 128


def _experiment_for_user(experiment_id, roles=None):
    experiment = experiments.get_experiment(experiment_id)
    require_project_access(experiment['project_id'], roles)
    return experiment


def _experiment_for_key(experiment_id):
    experiment = experiments.get_experiment(experiment_id)
    if experiment['project_id'] != g.api_project_id:
        abort(404, description='Experiment not found')
    return experiment


def _visitor_id(data):
    visitor_id = str(data.get('visitor_id') or '').strip()
    if not visitor_id or len(visitor_id) > MAX_VISITOR_ID_LENGTH:
        abort(400, description=f'visitor_id is required (max {MAX_VISITOR_ID_LENGTH} characters)')
    return visitor_id


@experiments_bp.route('/projects/<int:project_id>/experiments', methods=['POST'])
@login_required
def create_experiment(project_id):
    require_project_access(project_id, WRITE_ROLES)
    cleaned, errors = experiments.validate_experiment_input(request.get_json(silent=True) or {})
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    experiment = experiments.create_experiment(project_id, cleaned, current_user.id)
    return jsonify({'experiment': experiment}), 201


@experiments_bp.route('/projects/<int:project_id>/experiments')
@login_required
def list_experiments(project_id):
    require_project_access(project_id)
    status = request.args.get('status')
    if status and status not in experiments.EXPERIMENT_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(experiments.EXPERIMENT_STATUSES)}")
    return jsonify({'experiments': experiments.list_experiments(project_id, status)})


@experiments_bp.route('/experiments/<int:experiment_id>')
@login_required
def get_experiment(experiment_id):
    return jsonify({'experiment': _experiment_for_user(experiment_id)})


@experiments_bp.route('/experiments/<int:experiment_id>/<action>', methods=['POST'])
@login_required
def change_status(experiment_id, action):
    experiment = _experiment_for_user(experiment_id, WRITE_ROLES)
    return jsonify({'experiment': experiments.transition(experiment, action)})


@experiments_bp.route('/experiments/<int:experiment_id>/results')
@login_required
def results(experiment_id):
    experiment = _experiment_for_user(experiment_id)
    return jsonify(experiments.experiment_results(experiment))


@experiments_bp.route('/experiments/<int:experiment_id>', methods=['DELETE'])
@login_required
def delete_experiment(experiment_id):
    experiment = _experiment_for_user(experiment_id, WRITE_ROLES)
    experiments.delete_experiment(experiment)
    return '', 204


# ===== SDK =====

@experiments_sdk_bp.route('/<int:experiment_id>/assign', methods=['POST'])
@limiter.limit('600 per minute')
@api_key_required
def sdk_assign(experiment_id):
    experiment = _experiment_for_key(experiment_id)
    variant = experiments.assign_visitor(experiment, _visitor_id(request.get_json(silent=True) or {}))
    return jsonify({
        'experiment_id': experiment_id,
        'variant_key': variant['variant_key'],
        'config': variant['config'],
    })


@experiments_sdk_bp.route('/<int:experiment_id>/events', methods=['POST'])
@limiter.limit('600 per minute')
@api_key_required
def sdk_track(experiment_id):
    data = request.get_json(silent=True) or {}
    experiment = _experiment_for_key(experiment_id)
    value = data.get('event_value')
    if value is not None:
        try:
            value = float(value)
        except (TypeError, ValueError):
            abort(400, description='event_value must be numeric')
    event = experiments.track_event(
        experiment,
        _visitor_id(data),
        data.get('event_type'),
        data.get('event_name'),
        value,
    )
    return jsonify({'event': event}), 201
