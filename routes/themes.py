"""Themes, roadmap prioritization and AI priority scoring routes."""

from flask import Blueprint, abort, jsonify, request, send_file
from flask_login import login_required

from db import db_connect, row_to_dict, rows_to_dicts
from extensions import limiter
from pdf_generator import generate_roadmap_pdf
from services import priority_scoring, roadmap, themes
from services.access import WRITE_ROLES, require_project_access
from services.billing import consume_ai_quota, get_profile
from services.board import get_post

themes_bp = Blueprint('themes', __name__, url_prefix='/api')

PRIORITY_LEVELS = ('critical', 'high', 'medium', 'low')
MAX_DETECTION_DAYS = 365
MAX_BATCH_POSTS = 50


def _with_labels(theme):
    theme['is_emerging'] = bool(theme['is_emerging'])
    theme['sentiment_label'] = themes.sentiment_label(theme['avg_sentiment'] or 0)
    return theme


# ===== THEMES =====

@themes_bp.route('/projects/<int:project_id>/themes/detect', methods=['POST'])
@login_required
@limiter.limit('10 per hour')
def detect_themes(project_id):
    require_project_access(project_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    try:
        days = int(data.get('days', 90))
        limit = int(data.get('limit', themes.DEFAULT_BATCH_SIZE))
    except (TypeError, ValueError):
        abort(400, description='days and limit must be integers')
    if not 1 <= days <= MAX_DETECTION_DAYS:
        abort(400, description=f'days must be between 1 and {MAX_DETECTION_DAYS}')
    if not themes.MIN_CLUSTER_SIZE <= limit <= 500:
        abort(400, description=f'limit must be between {themes.MIN_CLUSTER_SIZE} and 500')

    usage = consume_ai_quota(project_id)
    summary = themes.run_theme_detection(project_id, days=days, limit=limit)
    summary['ai_usage'] = usage
    return jsonify(summary)


@themes_bp.route('/projects/<int:project_id>/themes')
@login_required
def list_themes(project_id):
    require_project_access(project_id)
    ranked = themes.rank_themes(themes.load_themes(project_id))
    return jsonify({'themes': [_with_labels(t) for t in ranked]})


@themes_bp.route('/projects/<int:project_id>/themes/emerging')
@login_required
def emerging_themes(project_id):
    require_project_access(project_id)
    days = min(max(request.args.get('days', 7, type=int), 1), 90)
    return jsonify({'themes': [_with_labels(t) for t in themes.emerging_themes(project_id, days)]})


@themes_bp.route('/projects/<int:project_id>/themes/clusters')
@login_required
def list_clusters(project_id):
    require_project_access(project_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM theme_clusters WHERE project_id = ? ORDER BY theme_count DESC', (project_id,))
    clusters = rows_to_dicts(c.fetchall())
    c.execute(
        'SELECT * FROM themes WHERE project_id = ? ORDER BY frequency DESC',
        (project_id,),
    )
    by_cluster = {}
    for theme in rows_to_dicts(c.fetchall()):
        by_cluster.setdefault(theme['cluster_id'], []).append(_with_labels(theme))
    conn.close()
    for cluster in clusters:
        cluster['themes'] = by_cluster.get(cluster['id'], [])
    return jsonify({'clusters': clusters})


@themes_bp.route('/projects/<int:project_id>/themes/<int:theme_id>')
@login_required
def get_theme(project_id, theme_id):
    require_project_access(project_id)
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM themes WHERE id = ? AND project_id = ?', (theme_id, project_id))
    theme = row_to_dict(c.fetchone())
    if not theme:
        conn.close()
        abort(404, description='Theme not found')
    c.execute(
        '''
        SELECT p.id, p.title, p.description, p.status, p.vote_count, p.sentiment_score,
               p.created_at, ft.confidence
        FROM feedback_themes ft JOIN posts p ON p.id = ft.post_id
        WHERE ft.theme_id = ?
        ORDER BY p.created_at DESC
        ''',
        (theme_id,),
    )
    theme['posts'] = rows_to_dicts(c.fetchall())
    conn.close()
    return jsonify({'theme': _with_labels(theme)})


# ===== ROADMAP =====

@themes_bp.route('/projects/<int:project_id>/roadmap/generate', methods=['POST'])
@login_required
@limiter.limit('20 per hour')
def generate_roadmap(project_id):
    require_project_access(project_id, WRITE_ROLES)
    suggestions = roadmap.generate_roadmap_suggestions(project_id)
    return jsonify({'suggestions': suggestions, 'count': len(suggestions)})


@themes_bp.route('/projects/<int:project_id>/roadmap/suggestions')
@login_required
def roadmap_suggestions(project_id):
    require_project_access(project_id)
    level = request.args.get('priority_level')
    if level and level not in PRIORITY_LEVELS:
        abort(400, description=f"priority_level must be one of: {', '.join(PRIORITY_LEVELS)}")
    return jsonify({'suggestions': roadmap.list_suggestions(project_id, level)})


@themes_bp.route('/projects/<int:project_id>/roadmap/export.pdf')
@login_required
@limiter.limit('30 per hour')
def export_roadmap(project_id):
    project = require_project_access(project_id)
    pdf = generate_roadmap_pdf(project['name'], roadmap.list_suggestions(project_id))
    return send_file(
        pdf,
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"{project['slug']}-roadmap.pdf",
    )


# ===== PRIORITY SCORING =====

def _scoring_options(data):
    strategy = data.get('strategy', 'growth')
    if strategy not in priority_scoring.STRATEGIES:
        abort(400, description=f"strategy must be one of: {', '.join(priority_scoring.STRATEGIES)}")
    quarter = data.get('current_quarter') or priority_scoring.current_quarter()
    if quarter not in priority_scoring.QUARTERS:
        abort(400, description=f"current_quarter must be one of: {', '.join(priority_scoring.QUARTERS)}")
    return strategy, quarter


def _tier_for(project_id, data):
    tier = data.get('tier')
    if tier in priority_scoring.TIERS:
        return tier
    return get_profile(project_id)['plan']


@themes_bp.route('/ai/priority-scoring', methods=['POST'])
@login_required
@limiter.limit('60 per hour')
def score_post():
    data = request.get_json(silent=True) or {}
    try:
        post_id = int(data.get('post_id'))
    except (TypeError, ValueError):
        abort(400, description='post_id is required')
    post = get_post(post_id)
    require_project_access(post['project_id'], WRITE_ROLES)
    strategy, quarter = _scoring_options(data)

    usage = consume_ai_quota(post['project_id'])
    ctx = priority_scoring.build_context(post, _tier_for(post['project_id'], data), strategy, quarter)
    result = priority_scoring.calculate_priority_score(ctx)
    priority_scoring.save_priority_score(post_id, strategy, result)
    return jsonify({'post_id': post_id, 'priority': result.to_dict(), 'ai_usage': usage})


@themes_bp.route('/ai/priority-scoring/batch', methods=['POST'])
@login_required
@limiter.limit('10 per hour')
def score_open_posts():
    data = request.get_json(silent=True) or {}
    try:
        project_id = int(data.get('project_id'))
        limit = int(data.get('limit', 20))
    except (TypeError, ValueError):
        abort(400, description='project_id is required')
    require_project_access(project_id, WRITE_ROLES)
    strategy, quarter = _scoring_options(data)
    limit = min(max(limit, 1), MAX_BATCH_POSTS)

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        "SELECT COUNT(*) FROM posts WHERE project_id = ? AND status = 'open' AND duplicate_of IS NULL",
        (project_id,),
    )
    open_posts = min(c.fetchone()[0], limit)
    conn.close()

    usage = consume_ai_quota(project_id, max(open_posts, 1))
    results = priority_scoring.batch_score_open_posts(
        project_id, _tier_for(project_id, data), strategy, quarter, limit
    )
    return jsonify({'scored': len(results), 'results': results, 'ai_usage': usage})
