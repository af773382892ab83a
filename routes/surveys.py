"""Survey management routes and the public response endpoints."""

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user, login_required

from extensions import limiter
from services import surveys
from services.access import WRITE_ROLES, require_project_access

surveys_bp = Blueprint('surveys', __name__, url_prefix='/api')
surveys_public_bp = Blueprint('surveys_public', __name__, url_prefix='/api/public/surveys')

PUBLIC_FIELDS = ('id', 'title', 'description', 'thank_you_message', 'closes_at', 'allow_anonymous')
QUESTION_FIELDS = ('id', 'question_type', 'question_text', 'options', 'required', 'min_value', 'max_value')


def _survey_for_user(survey_id, roles=None):
    survey = surveys.get_survey(survey_id)
    require_project_access(survey['project_id'], roles)
    return survey


@surveys_bp.route('/projects/<int:project_id>/surveys', methods=['POST'])
@login_required
def create_survey(project_id):
    require_project_access(project_id, WRITE_ROLES)
    cleaned, errors = surveys.validate_survey_input(request.get_json(silent=True) or {})
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400
    return jsonify({'survey': surveys.create_survey(project_id, cleaned, current_user.id)}), 201


@surveys_bp.route('/projects/<int:project_id>/surveys')
@login_required
def list_surveys(project_id):
    require_project_access(project_id)
    return jsonify({'surveys': surveys.list_surveys(project_id)})


@surveys_bp.route('/surveys/<int:survey_id>')
@login_required
def get_survey(survey_id):
    return jsonify({'survey': _survey_for_user(survey_id)})


@surveys_bp.route('/surveys/<int:survey_id>', methods=['PATCH'])
@login_required
def update_survey(survey_id):
    survey = _survey_for_user(survey_id, WRITE_ROLES)
    data = request.get_json(silent=True) or {}
    if 'status' not in data:
        abort(400, description='Nothing to update')
    return jsonify({'survey': surveys.update_status(survey, data['status'])})


@surveys_bp.route('/surveys/<int:survey_id>', methods=['DELETE'])
@login_required
def delete_survey(survey_id):
    survey = _survey_for_user(survey_id, WRITE_ROLES)
    surveys.delete_survey(survey)
    return '', 204


@surveys_bp.route('/surveys/<int:survey_id>/results')
@login_required
def survey_results(survey_id):
    return jsonify(surveys.survey_results(_survey_for_user(survey_id)))


# ===== PUBLIC =====

def _open_survey(survey_id):
    survey = surveys.get_survey(survey_id)
    if survey['status'] == 'draft':
        abort(404, description='Survey not found')
    if not surveys.is_open(survey):
        abort(410, description='This survey is closed')
    return survey


@surveys_public_bp.route('/<int:survey_id>')
def public_survey(survey_id):
    survey = _open_survey(survey_id)
    payload = {field: survey[field] for field in PUBLIC_FIELDS}
    payload['questions'] = [{field: q[field] for field in QUESTION_FIELDS} for q in survey['questions']]
    return jsonify({'survey': payload})


@surveys_public_bp.route('/<int:survey_id>/responses', methods=['POST'])
@limiter.limit('20 per hour')
def submit_response(survey_id):
    survey = _open_survey(survey_id)
    data = request.get_json(silent=True) or {}

    email = (data.get('email') or '').strip().lower() or None
    if email and ('@' not in email or len(email) > 254):
        abort(400, description='Enter a valid email address')
    if not survey['allow_anonymous'] and not email:
        abort(400, description='This survey requires an email address')

    answers, errors = surveys.validate_answers(survey['questions'], data.get('answers'))
    if errors:
        return jsonify({'error': 'Validation failed', 'fields': errors}), 400

    respondent_key = email or data.get('respondent_id') or f"{request.remote_addr}|{request.user_agent.string}"
    response = surveys.submit_response(survey, answers, str(respondent_key)[:256], email)
    return jsonify({'response': response, 'message': survey['thank_you_message']}), 201
