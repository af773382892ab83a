"""Billing routes: account summary, Stripe checkout/portal/webhook, trials and gift subscriptions."""

import stripe
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user, login_required

from extensions import csrf, limiter
from services import billing
from services.access import WRITE_ROLES, admin_required, require_project_access
from services.text import clean_text

billing_bp = Blueprint('billing', __name__, url_prefix='/api')

BILLING_CYCLES = ('monthly', 'annual')
MAX_GIFT_MESSAGE_LENGTH = 500


def _project_id_from_request():
    data = request.get_json(silent=True) or {}
    project_id = data.get('project_id') or request.args.get('project_id', type=int)
    try:
        return int(project_id)
    except (TypeError, ValueError):
        abort(400, description='project_id is required')


@billing_bp.route('/billing/account')
@login_required
def account():
    project = require_project_access(_project_id_from_request())
    return jsonify(billing.account_info(project['id'], current_user))


@billing_bp.route('/billing/checkout', methods=['POST'])
@login_required
@limiter.limit('10 per hour')
def checkout():
    data = request.get_json(silent=True) or {}
    project = require_project_access(_project_id_from_request(), WRITE_ROLES)
    cycle = data.get('billing_cycle', 'monthly')
    if cycle not in BILLING_CYCLES:
        abort(400, description=f"billing_cycle must be one of: {', '.join(BILLING_CYCLES)}")
    session = billing.create_checkout_session(project, current_user, cycle, bool(data.get('trial')))
    return jsonify(session)


@billing_bp.route('/billing/portal', methods=['POST'])
@login_required
@limiter.limit('20 per hour')
def portal():
    project = require_project_access(_project_id_from_request(), WRITE_ROLES)
    return jsonify(billing.create_portal_session(project))


@billing_bp.route('/billing/trial/start', methods=['POST'])
@login_required
@limiter.limit('5 per hour')
def start_trial():
    project = require_project_access(_project_id_from_request(), WRITE_ROLES)
    profile = billing.start_trial(project['id'])
    return jsonify({'plan': profile['plan'], 'trial': billing.trial_info(profile)}), 201


@billing_bp.route('/projects/<int:project_id>/ai-usage')
@login_required
def ai_usage(project_id):
    require_project_access(project_id)
    return jsonify(billing.get_ai_usage(project_id))


@billing_bp.route('/stripe/webhook', methods=['POST'])
@csrf.exempt
def stripe_webhook():
    payload = request.data
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')

    if not webhook_secret:
        return '', 204

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError):
        current_app.logger.warning('Rejected Stripe webhook with an invalid payload or signature')
        return jsonify({'error': 'Invalid signature'}), 400

    result = billing.handle_stripe_event(event)
    return jsonify({'received': True, 'result': result}), 200


# ===== GIFTS =====

@billing_bp.route('/admin/gifts', methods=['POST'])
@admin_required
def create_gift():
    data = request.get_json(silent=True) or {}
    email = (data.get('recipient_email') or '').strip().lower()
    message = clean_text(data.get('gift_message'), MAX_GIFT_MESSAGE_LENGTH) or None
    try:
        months = int(data.get('duration_months', 1))
    except (TypeError, ValueError):
        months = 0

    if '@' not in email or len(email) > 254:
        abort(400, description='A valid recipient_email is required')
    if not 1 <= months <= billing.MAX_GIFT_MONTHS:
        abort(400, description=f'duration_months must be between 1 and {billing.MAX_GIFT_MONTHS}')

    gift = billing.create_gift(current_user.id, email, months, message)
    return jsonify({'gift': gift}), 201


@billing_bp.route('/admin/gifts')
@admin_required
def list_gifts():
    status = request.args.get('status')
    if status and status not in billing.GIFT_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(billing.GIFT_STATUSES)}")
    return jsonify({'gifts': billing.list_gifts(status)})


@billing_bp.route('/admin/gifts/<int:gift_id>/cancel', methods=['POST'])
@admin_required
def cancel_gift(gift_id):
    return jsonify({'gift': billing.cancel_gift(gift_id)})


@billing_bp.route('/gifts/claim/<token>', methods=['POST'])
@login_required
@limiter.limit('20 per hour')
def claim_gift(token):
    return jsonify({'gift': billing.claim_gift(token, current_user)})
