"""Mission control dashboard and project analytics routes."""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from services import mission_control
from services.access import require_project_access
from services.billing import consume_ai_quota
from services.llm import is_enabled as llm_enabled

mission_control_bp = Blueprint('mission_control', __name__, url_prefix='/api')


@mission_control_bp.route('/projects/<int:project_id>/mission-control')
@login_required
def dashboard(project_id):
    project = require_project_access(project_id)
    refresh = request.args.get('refresh') in ('1', 'true')
    if refresh and llm_enabled():
        consume_ai_quota(project_id)
    briefing, generated_at, cached = mission_control.get_daily_briefing(project_id, refresh=refresh)
    return jsonify({
        'project': {'id': project['id'], 'name': project['name'], 'slug': project['slug']},
        'metrics': mission_control.collect_metrics(project_id),
        'briefing': briefing,
        'generated_at': generated_at,
        'cached': cached,
    })


@mission_control_bp.route('/app/analytics/<int:project_id>')
@login_required
def analytics(project_id):
    require_project_access(project_id)
    return jsonify(mission_control.project_analytics(project_id))
