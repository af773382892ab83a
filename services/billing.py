"""Plans, Stripe subscriptions, no-card trials, gift subscriptions and AI usage quotas."""

import logging
import secrets
from datetime import datetime, timedelta, timezone

import stripe
from flask import abort, current_app

from db import db_connect, parse_ts, row_to_dict, rows_to_dicts, to_json, utcnow, utcnow_iso
from services.email_service import send_gift_email

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('active', 'trialing', 'past_due')
ENDED_STATUSES = ('canceled', 'unpaid', 'incomplete_expired')
GIFT_STATUSES = ('pending', 'claimed', 'expired', 'cancelled')
MAX_GIFT_MONTHS = 24
DAYS_PER_GIFT_MONTH = 30
GIFT_CLAIM_DAYS = 30


class AIQuotaExceeded(Exception):
    def __init__(self, plan, used, limit):
        super().__init__(f'AI usage limit reached for this month ({used}/{limit} on the {plan} plan)')
        self.plan = plan
        self.used = used
        self.limit = limit


def _stripe_ts(value):
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def _ensure_profile(c, project_id):
    c.execute('SELECT * FROM billing_profiles WHERE project_id = ?', (project_id,))
    profile = row_to_dict(c.fetchone())
    if profile:
        return profile
    c.execute(
        "INSERT INTO billing_profiles (project_id, plan, updated_at) VALUES (?, 'free', ?)",
        (project_id, utcnow_iso()),
    )
    c.execute('SELECT * FROM billing_profiles WHERE project_id = ?', (project_id,))
    return row_to_dict(c.fetchone())


def get_profile(project_id):
    conn = db_connect()
    c = conn.cursor()
    profile = _ensure_profile(c, project_id)
    conn.commit()
    conn.close()
    return profile


def _update_profile(c, project_id, **fields):
    fields['updated_at'] = utcnow_iso()
    assignments = ', '.join(f'{name} = ?' for name in fields)
    c.execute(
        f'UPDATE billing_profiles SET {assignments} WHERE project_id = ?',
        list(fields.values()) + [project_id],
    )


def subscription_type(profile, now=None):
    """Classify a pro plan as yearly, monthly or gifted."""
    if profile.get('plan') != 'pro':
        return None
    if profile.get('billing_cycle') == 'gifted':
        return 'gifted'
    if not profile.get('stripe_customer_id') and not profile.get('subscription_id'):
        return 'trial' if profile.get('is_trial') else 'gifted'

    period_end = parse_ts(profile.get('current_period_end'))
    if period_end:
        days_left = (period_end - (now or utcnow())).days
        if days_left > 300:
            return 'yearly'
        if 25 <= days_left <= 35:
            return 'monthly'
    if profile.get('billing_cycle') in ('annual', 'yearly'):
        return 'yearly'
    return 'monthly'


def trial_info(profile, now=None):
    end = parse_ts(profile.get('trial_end_date'))
    days_remaining = None
    if end and profile.get('trial_status') == 'active':
        days_remaining = max(0, (end - (now or utcnow())).days)
    return {
        'is_trial': bool(profile.get('is_trial')),
        'status': profile.get('trial_status'),
        'start_date': profile.get('trial_start_date'),
        'end_date': profile.get('trial_end_date'),
        'cancelled_at': profile.get('trial_cancelled_at'),
        'days_remaining': days_remaining,
        'eligible': not profile.get('trial_start_date') and profile.get('plan') != 'pro',
    }


# ===== AI USAGE =====

def current_month():
    return utcnow().strftime('%Y-%m')


def ai_limit_for(plan):
    if plan == 'pro':
        return current_app.config.get('AI_LIMIT_PRO', 1000)
    return current_app.config.get('AI_LIMIT_FREE', 25)


def get_ai_usage(project_id):
    conn = db_connect()
    c = conn.cursor()
    profile = _ensure_profile(c, project_id)
    c.execute(
        'SELECT usage_count FROM ai_usage WHERE project_id = ? AND month = ?',
        (project_id, current_month()),
    )
    row = c.fetchone()
    conn.commit()
    conn.close()
    return {
        'month': current_month(),
        'used': row['usage_count'] if row else 0,
        'limit': ai_limit_for(profile['plan']),
        'plan': profile['plan'],
    }


def consume_ai_quota(project_id, amount=1):
    """Count ``amount`` AI calls against this month's quota or raise AIQuotaExceeded."""
    usage = get_ai_usage(project_id)
    if usage['used'] + amount > usage['limit']:
        logger.info('AI quota exceeded for project %s (%s/%s)', project_id, usage['used'], usage['limit'])
        raise AIQuotaExceeded(usage['plan'], usage['used'], usage['limit'])

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO ai_usage (project_id, month, usage_count) VALUES (?, ?, ?)
        ON CONFLICT(project_id, month) DO UPDATE SET usage_count = usage_count + excluded.usage_count
        ''',
        (project_id, usage['month'], amount),
    )
    conn.commit()
    conn.close()
    usage['used'] += amount
    return usage


# ===== ACCOUNT =====

def account_info(project_id, user):
    """Billing summary for a project, claiming any pending gifts addressed to ``user`` first."""
    claimed = claim_pending_gifts_for(user.id, user.email)
    profile = get_profile(project_id)
    now = utcnow()
    return {
        'project_id': project_id,
        'plan': profile['plan'],
        'subscription_status': profile['subscription_status'],
        'subscription_type': subscription_type(profile, now),
        'billing_cycle': profile['billing_cycle'],
        'current_period_end': profile['current_period_end'],
        'cancel_at_period_end': bool(profile['cancel_at_period_end']),
        'has_stripe_customer': bool(profile['stripe_customer_id']),
        'trial': trial_info(profile, now),
        'ai_usage': get_ai_usage(project_id),
        'claimed_gifts': claimed,
    }


def start_trial(project_id):
    """Start the one-off no-card trial for a project."""
    conn = db_connect()
    c = conn.cursor()
    profile = _ensure_profile(c, project_id)
    if profile['trial_start_date']:
        conn.close()
        abort(409, description='This project has already used its free trial')
    if profile['plan'] == 'pro':
        conn.close()
        abort(409, description='This project is already on the Pro plan')

    now = utcnow()
    trial_end = now + timedelta(days=current_app.config.get('TRIAL_DAYS', 14))
    _update_profile(
        c,
        project_id,
        plan='pro',
        billing_cycle='trial',
        subscription_status='trialing',
        is_trial=1,
        trial_status='active',
        trial_start_date=now.isoformat(),
        trial_end_date=trial_end.isoformat(),
        upgraded_at=now.isoformat(),
    )
    _record_event(c, project_id, 'trial.started', metadata={'trial_end_date': trial_end.isoformat()})
    conn.commit()
    c.execute('SELECT * FROM billing_profiles WHERE project_id = ?', (project_id,))
    profile = row_to_dict(c.fetchone())
    conn.close()
    logger.info('Trial started for project %s until %s', project_id, trial_end.isoformat())
    return profile


def set_plan(project_id, plan, billing_cycle=None, period_end=None):
    """Manually move a project between plans (support tooling)."""
    if plan not in ('free', 'pro'):
        raise ValueError(f'Unknown plan: {plan}')
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    _ensure_profile(c, project_id)
    if plan == 'pro':
        _update_profile(
            c,
            project_id,
            plan='pro',
            billing_cycle=billing_cycle or 'manual',
            subscription_status='active',
            current_period_end=period_end,
            upgraded_at=now,
        )
    else:
        _update_profile(
            c,
            project_id,
            plan='free',
            billing_cycle=None,
            subscription_status=None,
            current_period_end=None,
            is_trial=0,
            downgraded_at=now,
        )
    _record_event(c, project_id, 'plan.manual_change', metadata={'plan': plan, 'billing_cycle': billing_cycle})
    conn.commit()
    conn.close()
    logger.info('Plan for project %s set to %s manually', project_id, plan)
    return get_profile(project_id)


def expire_plans():
    """Downgrade finished no-card trials and gifted plans; expire stale pending gifts."""
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()

    c.execute(
        '''
        SELECT project_id FROM billing_profiles
        WHERE is_trial = 1 AND trial_status = 'active' AND subscription_id IS NULL
          AND trial_end_date IS NOT NULL AND trial_end_date < ?
        ''',
        (now,),
    )
    trial_projects = [row['project_id'] for row in c.fetchall()]
    for project_id in trial_projects:
        _update_profile(
            c,
            project_id,
            plan='free',
            billing_cycle=None,
            subscription_status='expired',
            is_trial=0,
            trial_status='expired',
            downgraded_at=now,
        )
        _record_event(c, project_id, 'trial.expired')

    c.execute(
        '''
        SELECT project_id FROM billing_profiles
        WHERE billing_cycle = 'gifted' AND current_period_end IS NOT NULL AND current_period_end < ?
        ''',
        (now,),
    )
    gifted_projects = [row['project_id'] for row in c.fetchall()]
    for project_id in gifted_projects:
        _update_profile(
            c,
            project_id,
            plan='free',
            billing_cycle=None,
            subscription_status='expired',
            subscription_id=None,
            downgraded_at=now,
        )
        _record_event(c, project_id, 'gift.plan_expired')

    c.execute(
        '''
        UPDATE gift_subscriptions SET status = 'expired', updated_at = ?
        WHERE status = 'pending' AND expires_at IS NOT NULL AND expires_at < ?
        ''',
        (now, now),
    )
    gifts_expired = c.rowcount
    conn.commit()
    conn.close()

    summary = {
        'trials_expired': len(trial_projects),
        'gifted_plans_expired': len(gifted_projects),
        'gifts_expired': gifts_expired,
    }
    logger.info('Plan expiry run: %s', summary)
    return summary


# ===== STRIPE =====

def create_checkout_session(project, user, cycle='monthly', with_trial=False):
    if cycle == 'annual':
        price_id = current_app.config.get('STRIPE_PRICE_ID_ANNUAL')
    else:
        price_id = current_app.config.get('STRIPE_PRICE_ID_MONTHLY')
    if not current_app.config.get('STRIPE_SECRET_KEY') or not price_id:
        abort(503, description='Payments are not configured')

    profile = get_profile(project['id'])
    if profile['plan'] == 'pro' and profile['subscription_status'] in ('active', 'trialing') \
            and profile['subscription_id'] and not profile['subscription_id'].startswith('gift-'):
        abort(409, description='This project already has an active subscription')

    customer_id = profile['stripe_customer_id']
    metadata = {'project_id': str(project['id']), 'user_id': str(user.id), 'billing_cycle': cycle}
    try:
        if not customer_id:
            customer = stripe.Customer.create(email=user.email, metadata=metadata)
            customer_id = customer.id
            conn = db_connect()
            c = conn.cursor()
            _update_profile(c, project['id'], stripe_customer_id=customer_id)
            conn.commit()
            conn.close()

        subscription_data = {'metadata': metadata}
        use_trial = with_trial and not profile['trial_start_date']
        if use_trial:
            subscription_data['trial_period_days'] = current_app.config.get('TRIAL_DAYS', 14)
            metadata['trial'] = '1'

        site_url = current_app.config.get('SITE_URL', '')
        session = stripe.checkout.Session.create(
            customer=customer_id,
            client_reference_id=str(project['id']),
            payment_method_types=['card'],
            line_items=[{'price': price_id, 'quantity': 1}],
            mode='subscription',
            subscription_data=subscription_data,
            metadata=metadata,
            success_url=f"{site_url}/app/{project['slug']}/billing?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{site_url}/app/{project['slug']}/billing?checkout=cancelled",
        )
    except stripe.StripeError:
        logger.exception('Stripe checkout failed for project %s', project['id'])
        abort(502, description='We were unable to start checkout. Please try again.')

    return {'checkout_url': session.url, 'session_id': session.id, 'trial': use_trial}


def create_portal_session(project):
    profile = get_profile(project['id'])
    if not profile['stripe_customer_id']:
        abort(400, description='This project has no billing account yet')
    try:
        session = stripe.billing_portal.Session.create(
            customer=profile['stripe_customer_id'],
            return_url=f"{current_app.config.get('SITE_URL', '')}/app/{project['slug']}/billing",
        )
    except stripe.StripeError:
        logger.exception('Stripe portal session failed for project %s', project['id'])
        abort(502, description='We were unable to open the billing portal. Please try again.')
    return {'portal_url': session.url}


def _record_event(c, project_id, event_type, stripe_event_id=None, customer_id=None,
                  amount=None, currency=None, metadata=None):
    c.execute(
        '''
        INSERT INTO billing_events (
            project_id, event_type, stripe_event_id, stripe_customer_id, amount, currency, metadata, created_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''',
        (project_id, event_type, stripe_event_id, customer_id, amount, currency,
         to_json(metadata or {}), utcnow_iso()),
    )


def _profile_for(c, subscription_id=None, customer_id=None, project_id=None):
    if project_id:
        c.execute('SELECT * FROM projects WHERE id = ?', (project_id,))
        if c.fetchone():
            return _ensure_profile(c, project_id)
    if subscription_id:
        c.execute('SELECT * FROM billing_profiles WHERE subscription_id = ?', (subscription_id,))
        row = c.fetchone()
        if row:
            return row_to_dict(row)
    if customer_id:
        c.execute('SELECT * FROM billing_profiles WHERE stripe_customer_id = ?', (customer_id,))
        row = c.fetchone()
        if row:
            return row_to_dict(row)
    return None


def _on_checkout_completed(c, obj):
    if obj.get('mode') != 'subscription':
        return None
    metadata = obj.get('metadata') or {}
    project_id = metadata.get('project_id') or obj.get('client_reference_id')
    try:
        project_id = int(project_id) if project_id else None
    except (TypeError, ValueError):
        logger.warning('Ignoring checkout %s with malformed project_id %r', obj.get('id'), project_id)
        project_id = None
    profile = _profile_for(c, customer_id=obj.get('customer'), project_id=project_id)
    if not profile:
        return None

    now = utcnow()
    fields = {
        'plan': 'pro',
        'stripe_customer_id': obj.get('customer'),
        'subscription_id': obj.get('subscription'),
        'billing_cycle': metadata.get('billing_cycle', 'monthly'),
        'subscription_status': 'active',
        'cancel_at_period_end': 0,
        'upgraded_at': now.isoformat(),
    }
    if metadata.get('trial') == '1':
        trial_end = now + timedelta(days=current_app.config.get('TRIAL_DAYS', 14))
        fields.update(
            subscription_status='trialing',
            is_trial=1,
            trial_status='active',
            trial_start_date=now.isoformat(),
            trial_end_date=trial_end.isoformat(),
        )
    _update_profile(c, profile['project_id'], **fields)
    return profile['project_id']


def _on_subscription_updated(c, obj):
    profile = _profile_for(c, subscription_id=obj.get('id'), customer_id=obj.get('customer'))
    if not profile:
        return None

    status = obj.get('status')
    fields = {
        'subscription_id': obj.get('id'),
        'subscription_status': status,
        'current_period_end': _stripe_ts(obj.get('current_period_end')) or profile['current_period_end'],
        'cancel_at_period_end': int(bool(obj.get('cancel_at_period_end'))),
    }
    if profile['subscription_status'] == 'trialing' and status == 'active':
        fields.update(is_trial=0, trial_status='converted')
        logger.info('Trial converted for project %s', profile['project_id'])
    if status in ('active', 'trialing'):
        fields['plan'] = 'pro'
    elif status in ENDED_STATUSES:
        fields.update(plan='free', downgraded_at=utcnow_iso())
    if obj.get('trial_end') and status == 'trialing':
        fields['trial_end_date'] = _stripe_ts(obj.get('trial_end'))
    _update_profile(c, profile['project_id'], **fields)
    return profile['project_id']


def _on_subscription_deleted(c, obj):
    profile = _profile_for(c, subscription_id=obj.get('id'), customer_id=obj.get('customer'))
    if not profile:
        return None
    now = utcnow_iso()
    fields = {
        'plan': 'free',
        'subscription_status': 'canceled',
        'cancel_at_period_end': 0,
        'downgraded_at': now,
    }
    if profile['is_trial']:
        fields.update(is_trial=0, trial_status='cancelled', trial_cancelled_at=now)
    _update_profile(c, profile['project_id'], **fields)
    return profile['project_id']


def _on_payment_succeeded(c, obj):
    profile = _profile_for(c, subscription_id=obj.get('subscription'), customer_id=obj.get('customer'))
    if not profile:
        return None
    if profile['subscription_status'] == 'past_due':
        _update_profile(c, profile['project_id'], subscription_status='active')
    return profile['project_id']


def _on_payment_failed(c, obj):
    profile = _profile_for(c, subscription_id=obj.get('subscription'), customer_id=obj.get('customer'))
    if not profile:
        return None
    _update_profile(c, profile['project_id'], subscription_status='past_due')
    logger.warning('Payment failed for project %s', profile['project_id'])
    return profile['project_id']


STRIPE_HANDLERS = {
    'checkout.session.completed': _on_checkout_completed,
    'customer.subscription.updated': _on_subscription_updated,
    'customer.subscription.deleted': _on_subscription_deleted,
    'invoice.payment_succeeded': _on_payment_succeeded,
    'invoice.payment_failed': _on_payment_failed,
}


def handle_stripe_event(event):
    """Apply a verified Stripe event. Returns 'ignored', 'duplicate' or 'processed'."""
    event_type = event.get('type', '')
    handler = STRIPE_HANDLERS.get(event_type)
    if handler is None:
        return 'ignored'

    obj = (event.get('data') or {}).get('object') or {}
    conn = db_connect()
    c = conn.cursor()
    if event.get('id'):
        c.execute('SELECT id FROM billing_events WHERE stripe_event_id = ?', (event['id'],))
        if c.fetchone():
            conn.close()
            return 'duplicate'

    project_id = handler(c, obj)
    if event_type == 'invoice.payment_succeeded':
        amount = obj.get('amount_paid')
    elif event_type == 'invoice.payment_failed':
        amount = obj.get('amount_due')
    else:
        amount = obj.get('amount_total')
    _record_event(
        c,
        project_id,
        event_type,
        stripe_event_id=event.get('id'),
        customer_id=obj.get('customer'),
        amount=amount,
        currency=obj.get('currency'),
        metadata={'object_id': obj.get('id'), 'status': obj.get('status')},
    )
    conn.commit()
    conn.close()
    logger.info('Stripe event %s handled for project %s', event_type, project_id)
    return 'processed'


# ===== GIFTS =====

def create_gift(sender_id, recipient_email, duration_months, gift_message=None):
    token = secrets.token_urlsafe(24)
    now = utcnow_iso()
    # unclaimed gifts lapse after the claim window; claiming resets expires_at to the plan end
    claim_by = (utcnow() + timedelta(days=GIFT_CLAIM_DAYS)).isoformat()
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id FROM users WHERE email = ?', (recipient_email,))
    recipient = c.fetchone()
    c.execute(
        '''
        INSERT INTO gift_subscriptions (
            sender_id, recipient_email, recipient_id, claim_token, duration_months,
            gift_message, status, expires_at, created_at, updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?)
        ''',
        (sender_id, recipient_email, recipient['id'] if recipient else None, token,
         duration_months, gift_message, claim_by, now, now),
    )
    gift_id = c.lastrowid
    conn.commit()
    c.execute('SELECT * FROM gift_subscriptions WHERE id = ?', (gift_id,))
    gift = row_to_dict(c.fetchone())
    conn.close()

    claim_link = f"{current_app.config.get('SITE_URL', '')}/gift/claim/{token}"
    gift['email_sent'] = send_gift_email(recipient_email, claim_link, duration_months, gift_message)
    gift['claim_link'] = claim_link
    logger.info('Gift %s created for %s (%s months)', gift_id, recipient_email, duration_months)
    return gift


def list_gifts(status=None):
    conn = db_connect()
    c = conn.cursor()
    if status:
        c.execute('SELECT * FROM gift_subscriptions WHERE status = ? ORDER BY created_at DESC', (status,))
    else:
        c.execute('SELECT * FROM gift_subscriptions ORDER BY created_at DESC')
    gifts = rows_to_dicts(c.fetchall())
    conn.close()
    return gifts


def cancel_gift(gift_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM gift_subscriptions WHERE id = ?', (gift_id,))
    gift = row_to_dict(c.fetchone())
    if not gift:
        conn.close()
        abort(404, description='Gift not found')
    if gift['status'] != 'pending':
        conn.close()
        abort(409, description=f"Only pending gifts can be cancelled (this one is {gift['status']})")
    c.execute(
        "UPDATE gift_subscriptions SET status = 'cancelled', updated_at = ? WHERE id = ?",
        (utcnow_iso(), gift_id),
    )
    conn.commit()
    conn.close()
    gift['status'] = 'cancelled'
    return gift


def _apply_gift(c, gift, user_id):
    """Mark the gift claimed and move every project the user owns onto the gifted Pro plan."""
    now = utcnow()
    expires_at = now + timedelta(days=DAYS_PER_GIFT_MONTH * gift['duration_months'])
    c.execute(
        '''
        UPDATE gift_subscriptions
        SET status = 'claimed', recipient_id = ?, claimed_at = ?, expires_at = ?, updated_at = ?
        WHERE id = ?
        ''',
        (user_id, now.isoformat(), expires_at.isoformat(), now.isoformat(), gift['id']),
    )

    c.execute('SELECT id FROM projects WHERE owner_id = ?', (user_id,))
    project_ids = [row['id'] for row in c.fetchall()]
    upgraded = []
    for project_id in project_ids:
        profile = _ensure_profile(c, project_id)
        paid = profile['subscription_id'] and not profile['subscription_id'].startswith('gift-')
        if paid and profile['subscription_status'] in ACTIVE_STATUSES:
            continue
        _update_profile(
            c,
            project_id,
            plan='pro',
            billing_cycle='gifted',
            subscription_status='active',
            subscription_id=f"gift-{gift['id']}",
            current_period_end=expires_at.isoformat(),
            cancel_at_period_end=0,
            upgraded_at=now.isoformat(),
        )
        _record_event(c, project_id, 'gift.claimed', metadata={'gift_id': gift['id']})
        upgraded.append(project_id)

    return {
        'id': gift['id'],
        'duration_months': gift['duration_months'],
        'expires_at': expires_at.isoformat(),
        'projects_upgraded': upgraded,
    }


def claim_gift(token, user):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM gift_subscriptions WHERE claim_token = ?', (token,))
    gift = row_to_dict(c.fetchone())
    if not gift:
        conn.close()
        abort(404, description='Gift not found')
    if gift['status'] != 'pending':
        conn.close()
        abort(410, description=f"This gift is no longer available ({gift['status']})")
    if parse_ts(gift['expires_at']) and parse_ts(gift['expires_at']) < utcnow():
        c.execute(
            "UPDATE gift_subscriptions SET status = 'expired', updated_at = ? WHERE id = ?",
            (utcnow_iso(), gift['id']),
        )
        conn.commit()
        conn.close()
        abort(410, description='This gift has expired')
    if gift['recipient_email'].lower() != (user.email or '').lower() and not user.is_admin:
        conn.close()
        abort(403, description='This gift was sent to a different email address')

    result = _apply_gift(c, gift, user.id)
    conn.commit()
    conn.close()
    logger.info('Gift %s claimed by user %s', gift['id'], user.id)
    return result


def claim_pending_gifts_for(user_id, email):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT * FROM gift_subscriptions
        WHERE status = 'pending' AND (recipient_id = ? OR LOWER(recipient_email) = ?)
        ORDER BY created_at
        ''',
        (user_id, (email or '').lower()),
    )
    gifts = rows_to_dicts(c.fetchall())
    now = utcnow()
    claimed = []
    for gift in gifts:
        expires_at = parse_ts(gift['expires_at'])
        if expires_at and expires_at < now:
            c.execute(
                "UPDATE gift_subscriptions SET status = 'expired', updated_at = ? WHERE id = ?",
                (now.isoformat(), gift['id']),
            )
            continue
        claimed.append(_apply_gift(c, gift, user_id))
    conn.commit()
    conn.close()
    if claimed:
        logger.info('Auto-claimed %s gift(s) for user %s', len(claimed), user_id)
    return claimed
