"""A/B experiments: definition, deterministic assignment, event tracking and results."""

import hashlib
import logging
import re

from flask import abort

from db import db_connect, row_to_dict, rows_to_dicts, to_json, utcnow_iso
from services import bayesian
from services.text import clean_text

logger = logging.getLogger(__name__)

EXPERIMENT_STATUSES = ('draft', 'running', 'completed')
EVENT_TYPES = ('pageview', 'click', 'conversion', 'custom')
KEY_RE = re.compile(r'^[a-z0-9_-]{1,50}$')
MIN_VARIANTS = 2
MAX_VARIANTS = 10
DEFAULT_MIN_LIFT = 0.2

TRANSITIONS = {
    'start': ('draft', 'running'),
    'stop': ('running', 'completed'),
}


def validate_experiment_input(data):
    """Return (cleaned, errors) for an experiment definition."""
    errors = {}
    name = clean_text(data.get('name'), 200)
    hypothesis = clean_text(data.get('hypothesis'), 2000)
    goal_event = (data.get('goal_event') or '').strip().lower()
    variants = data.get('variants')

    if not name:
        errors['name'] = 'Name is required.'
    if not KEY_RE.match(goal_event):
        errors['goal_event'] = 'Goal event must be 1-50 lowercase letters, digits, underscores or hyphens.'

    cleaned_variants = []
    if not isinstance(variants, list) or not MIN_VARIANTS <= len(variants) <= MAX_VARIANTS:
        errors['variants'] = f'Provide between {MIN_VARIANTS} and {MAX_VARIANTS} variants.'
    else:
        for variant in variants:
            if not isinstance(variant, dict):
                errors['variants'] = 'Each variant must be an object.'
                break
            key = (variant.get('key') or '').strip().lower()
            try:
                traffic = int(variant.get('traffic_percentage'))
            except (TypeError, ValueError):
                traffic = -1
            config = variant.get('config') or {}
            if not KEY_RE.match(key):
                errors['variants'] = f'Invalid variant key: {key!r}.'
                break
            if not 0 <= traffic <= 100:
                errors['variants'] = f'Traffic percentage for {key} must be between 0 and 100.'
                break
            if not isinstance(config, dict):
                errors['variants'] = f'Config for {key} must be an object.'
                break
            cleaned_variants.append({
                'key': key,
                'name': clean_text(variant.get('name'), 100) or key,
                'traffic_percentage': traffic,
                'is_control': bool(variant.get('is_control')),
                'config': config,
            })

        if 'variants' not in errors:
            keys = [v['key'] for v in cleaned_variants]
            if len(set(keys)) != len(keys):
                errors['variants'] = 'Variant keys must be unique.'
            elif sum(1 for v in cleaned_variants if v['is_control']) != 1:
                errors['variants'] = 'Exactly one variant must be the control.'
            elif sum(v['traffic_percentage'] for v in cleaned_variants) != 100:
                errors['variants'] = 'Traffic percentages must add up to 100.'

    return {
        'name': name,
        'hypothesis': hypothesis or None,
        'goal_event': goal_event,
        'variants': cleaned_variants,
    }, errors


def _load_variants(c, experiment_id):
    c.execute(
        'SELECT * FROM experiment_variants WHERE experiment_id = ? ORDER BY id',
        (experiment_id,),
    )
    variants = rows_to_dicts(c.fetchall(), json_fields=('config',))
    for variant in variants:
        variant['is_control'] = bool(variant['is_control'])
    return variants


def create_experiment(project_id, cleaned, user_id=None):
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO experiments (project_id, name, hypothesis, goal_event, status, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, 'draft', ?, ?, ?)
        ''',
        (project_id, cleaned['name'], cleaned['hypothesis'], cleaned['goal_event'], user_id, now, now),
    )
    experiment_id = c.lastrowid
    c.executemany(
        '''
        INSERT INTO experiment_variants (experiment_id, variant_key, name, traffic_percentage, is_control, config)
        VALUES (?, ?, ?, ?, ?, ?)
        ''',
        [
            (experiment_id, v['key'], v['name'], v['traffic_percentage'], int(v['is_control']), to_json(v['config']))
            for v in cleaned['variants']
        ],
    )
    conn.commit()
    conn.close()
    logger.info('Experiment %s created in project %s', experiment_id, project_id)
    return get_experiment(experiment_id)


def get_experiment(experiment_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM experiments WHERE id = ?', (experiment_id,))
    experiment = row_to_dict(c.fetchone())
    if not experiment:
        conn.close()
        abort(404, description='Experiment not found')
    experiment['variants'] = _load_variants(c, experiment_id)
    conn.close()
    return experiment


def list_experiments(project_id, status=None):
    conn = db_connect()
    c = conn.cursor()
    params = [project_id]
    status_clause = ''
    if status:
        status_clause = 'AND e.status = ?'
        params.append(status)
    c.execute(
        f'''
        SELECT e.*,
               (SELECT COUNT(*) FROM experiment_assignments a WHERE a.experiment_id = e.id) AS visitors
        FROM experiments e
        WHERE e.project_id = ? {status_clause}
        ORDER BY e.created_at DESC
        ''',
        params,
    )
    experiments = rows_to_dicts(c.fetchall())
    conn.close()
    return experiments


def transition(experiment, action):
    """Move an experiment through draft -> running -> completed."""
    if action not in TRANSITIONS:
        abort(400, description=f"Unknown action: {action}")
    expected, new_status = TRANSITIONS[action]
    if experiment['status'] != expected:
        abort(409, description=f"Cannot {action} an experiment that is {experiment['status']}")

    now = utcnow_iso()
    column = 'started_at' if action == 'start' else 'ended_at'
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        f'UPDATE experiments SET status = ?, {column} = ?, updated_at = ? WHERE id = ?',
        (new_status, now, now, experiment['id']),
    )
    conn.commit()
    conn.close()
    logger.info('Experiment %s moved to %s', experiment['id'], new_status)
    experiment.update({'status': new_status, column: now, 'updated_at': now})
    return experiment


def bucket_for(experiment_id, visitor_id):
    digest = hashlib.sha256(f'{experiment_id}:{visitor_id}'.encode('utf-8')).hexdigest()
    return int(digest, 16) % 100


def pick_variant(variants, bucket):
    cumulative = 0
    for variant in variants:
        cumulative += variant['traffic_percentage']
        if bucket < cumulative:
            return variant
    return variants[-1]


def assign_visitor(experiment, visitor_id):
    """Return the visitor's variant, persisting a new assignment the first time."""
    if experiment['status'] != 'running':
        abort(409, description='Experiment is not running')

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT variant_id FROM experiment_assignments WHERE experiment_id = ? AND visitor_id = ?',
        (experiment['id'], visitor_id),
    )
    existing = c.fetchone()
    variants = experiment.get('variants') or _load_variants(c, experiment['id'])
    if existing:
        conn.close()
        return next(v for v in variants if v['id'] == existing['variant_id'])

    variant = pick_variant(variants, bucket_for(experiment['id'], visitor_id))
    c.execute(
        '''
        INSERT OR IGNORE INTO experiment_assignments (experiment_id, variant_id, visitor_id, assigned_at)
        VALUES (?, ?, ?, ?)
        ''',
        (experiment['id'], variant['id'], visitor_id, utcnow_iso()),
    )
    conn.commit()
    conn.close()
    return variant


def track_event(experiment, visitor_id, event_type, event_name=None, event_value=None):
    if event_type not in EVENT_TYPES:
        abort(400, description=f"event_type must be one of: {', '.join(EVENT_TYPES)}")
    variant = assign_visitor(experiment, visitor_id)
    event_name = (event_name or event_type).strip().lower()[:100]

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO experiment_events (experiment_id, variant_id, visitor_id, event_type, event_name, event_value, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ''',
        (experiment['id'], variant['id'], visitor_id, event_type, event_name, event_value, utcnow_iso()),
    )
    event_id = c.lastrowid
    conn.commit()
    conn.close()
    return {'id': event_id, 'variant_key': variant['variant_key'], 'event_type': event_type, 'event_name': event_name}


def experiment_results(experiment, seed=None):
    """Per-variant conversion stats with the Bayesian comparison against control."""
    conn = db_connect()
    c = conn.cursor()
    variants = experiment.get('variants') or _load_variants(c, experiment['id'])
    c.execute(
        'SELECT variant_id, COUNT(*) AS visitors FROM experiment_assignments WHERE experiment_id = ? GROUP BY variant_id',
        (experiment['id'],),
    )
    visitors = {row['variant_id']: row['visitors'] for row in c.fetchall()}
    c.execute(
        '''
        SELECT variant_id, COUNT(DISTINCT visitor_id) AS conversions
        FROM experiment_events
        WHERE experiment_id = ? AND (event_type = 'conversion' OR event_name = ?)
        GROUP BY variant_id
        ''',
        (experiment['id'], experiment['goal_event']),
    )
    conversions = {row['variant_id']: row['conversions'] for row in c.fetchall()}
    c.execute(
        'SELECT variant_id, COUNT(*) AS events FROM experiment_events WHERE experiment_id = ? GROUP BY variant_id',
        (experiment['id'],),
    )
    events = {row['variant_id']: row['events'] for row in c.fetchall()}
    conn.close()

    inputs = [
        {
            'id': v['id'],
            'visitors': visitors.get(v['id'], 0),
            'conversions': min(conversions.get(v['id'], 0), visitors.get(v['id'], 0)),
            'is_control': v['is_control'],
        }
        for v in variants
    ]
    analysis = bayesian.analyze_variants(inputs, seed=seed)
    by_id = {v['id']: v for v in variants}
    for result in analysis['variants']:
        variant = by_id[result['variant_id']]
        result.update({
            'variant_key': variant['variant_key'],
            'name': variant['name'],
            'traffic_percentage': variant['traffic_percentage'],
            'events': events.get(variant['id'], 0),
        })

    control = next((r for r in analysis['variants'] if r['is_control']), None)
    challengers = [r for r in analysis['variants'] if not r['is_control']]
    sample_size = None
    if control and control['conversion_rate'] > 0:
        best = max((r['conversion_rate'] for r in challengers), default=0)
        target = best if best and best != control['conversion_rate'] else control['conversion_rate'] * (1 + DEFAULT_MIN_LIFT)
        sample_size = bayesian.required_sample_size(control['conversion_rate'], min(target, 0.99))

    return {
        'experiment_id': experiment['id'],
        'status': experiment['status'],
        'goal_event': experiment['goal_event'],
        'total_visitors': sum(visitors.values()),
        'variants': analysis['variants'],
        'winner_variant_id': analysis['winner_variant_id'],
        'is_significant': analysis['is_significant'],
        'recommended_sample_size': sample_size,
    }


def delete_experiment(experiment):
    if experiment['status'] == 'running':
        abort(409, description='Stop the experiment before deleting it')
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM experiments WHERE id = ?', (experiment['id'],))
    conn.commit()
    conn.close()
