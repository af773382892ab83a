"""Competitive intelligence routes: competitors, mentions and feature gaps."""

from flask import Blueprint, abort, jsonify, request
from flask_login import login_required

from services import competitive
from services.access import WRITE_ROLES, require_project_access
from services.billing import consume_ai_quota
from services.board import get_post
from services.llm import is_enabled as llm_enabled

competitive_bp = Blueprint('competitive', __name__, url_prefix='/api')

MAX_MENTIONS_LIMIT = 200
MAX_ANALYZE_LENGTH = 5000


@competitive_bp.route('/projects/<int:project_id>/competitive/overview')
@login_required
def overview(project_id):
    require_project_access(project_id)
    return jsonify({
        'summary': competitive.competitive_summary(project_id),
        'competitors': competitive.list_competitors(project_id)[:10],
        'feature_gaps': competitive.list_feature_gaps(project_id, status='identified')[:10],
    })


@competitive_bp.route('/projects/<int:project_id>/competitors')
@login_required
def list_competitors(project_id):
    require_project_access(project_id)
    status = request.args.get('status')
    if status and status not in competitive.COMPETITOR_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(competitive.COMPETITOR_STATUSES)}")
    return jsonify({'competitors': competitive.list_competitors(project_id, status)})


@competitive_bp.route('/projects/<int:project_id>/competitors', methods=['POST'])
@login_required
def create_competitor(project_id):
    require_project_access(project_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    return jsonify({'competitor': competitive.create_competitor(project_id, data.get('name'))}), 201


@competitive_bp.route('/competitors/<int:competitor_id>', methods=['PATCH'])
@login_required
def update_competitor(competitor_id):
    competitor = competitive.get_competitor(competitor_id)
    require_project_access(competitor['project_id'], WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    return jsonify({'competitor': competitive.update_competitor(competitor, data)})


@competitive_bp.route('/competitors/<int:competitor_id>', methods=['DELETE'])
@login_required
def delete_competitor(competitor_id):
    competitor = competitive.get_competitor(competitor_id)
    require_project_access(competitor['project_id'], WRITE_ROLES)
    competitive.delete_competitor(competitor)
    return '', 204


@competitive_bp.route('/projects/<int:project_id>/competitors/mentions')
@login_required
def list_mentions(project_id):
    require_project_access(project_id)
    mention_type = request.args.get('mention_type')
    if mention_type and mention_type not in competitive.MENTION_TYPES:
        abort(400, description=f"mention_type must be one of: {', '.join(competitive.MENTION_TYPES)}")
    limit = request.args.get('limit', 50, type=int)
    if limit < 1 or limit > MAX_MENTIONS_LIMIT:
        abort(400, description=f'limit must be 1-{MAX_MENTIONS_LIMIT}')
    mentions = competitive.list_mentions(
        project_id,
        competitor_id=request.args.get('competitor_id', type=int),
        mention_type=mention_type,
        limit=limit,
    )
    return jsonify({'mentions': mentions})


@competitive_bp.route('/projects/<int:project_id>/competitors/analyze', methods=['POST'])
@login_required
def analyze_text(project_id):
    """Extract competitor mentions from pasted feedback and store them."""
    require_project_access(project_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    text = (data.get('text') or '').strip()
    if not text or len(text) > MAX_ANALYZE_LENGTH:
        abort(400, description=f'text is required (max {MAX_ANALYZE_LENGTH} characters)')
    post_id = data.get('post_id')
    if post_id is not None and get_post(post_id)['project_id'] != project_id:
        abort(404, description='Post not found')
    if llm_enabled():
        consume_ai_quota(project_id)
    mentions = competitive.analyze_text_for_competitors(project_id, text, post_id=post_id)
    return jsonify({'mentions': mentions}), 201


@competitive_bp.route('/projects/<int:project_id>/feature-gaps')
@login_required
def list_feature_gaps(project_id):
    require_project_access(project_id)
    status = request.args.get('status')
    if status and status not in competitive.GAP_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(competitive.GAP_STATUSES)}")
    return jsonify({'feature_gaps': competitive.list_feature_gaps(project_id, status)})


@competitive_bp.route('/feature-gaps/<int:gap_id>', methods=['PATCH'])
@login_required
def update_feature_gap(gap_id):
    gap = competitive.get_feature_gap(gap_id)
    require_project_access(gap['project_id'], WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    return jsonify({'feature_gap': competitive.update_gap_status(gap, data.get('status'))})
