"""
SQLite persistence for SignalsLoop.
Connection helper, schema initialization and small row/JSON helpers shared by routes and services.
"""

import json
import sqlite3
from datetime import datetime, timezone

from flask import current_app
from werkzeug.security import generate_password_hash


def db_connect():
    conn = sqlite3.connect(current_app.config['DATABASE_PATH'])
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def utcnow():
    return datetime.now(timezone.utc)


def utcnow_iso():
    return utcnow().isoformat()


def parse_ts(value):
    """Parse a stored ISO timestamp; naive values are treated as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_json(data):
    return json.dumps(data, ensure_ascii=False)


def from_json(data, fallback):
    if not data:
        return fallback
    try:
        return json.loads(data)
    except (TypeError, json.JSONDecodeError):
        return fallback


def row_to_dict(row, json_fields=()):
    if row is None:
        return None
    data = dict(row)
    for field in json_fields:
        if field in data:
            data[field] = from_json(data[field], [] if field.endswith('s') else {})
    return data


def rows_to_dicts(rows, json_fields=()):
    return [row_to_dict(row, json_fields) for row in rows]


SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        name TEXT,
        password_hash TEXT NOT NULL,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        slug TEXT UNIQUE NOT NULL,
        description TEXT,
        owner_id INTEGER NOT NULL,
        is_private INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (owner_id) REFERENCES users(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS project_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('admin', 'member')),
        created_at TEXT NOT NULL,
        UNIQUE (project_id, user_id),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS api_keys (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        key_prefix TEXT NOT NULL,
        key_hash TEXT UNIQUE NOT NULL,
        usage_count INTEGER NOT NULL DEFAULT 0,
        last_used_at TEXT,
        revoked_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT,
        status TEXT NOT NULL DEFAULT 'open'
            CHECK (status IN ('open', 'planned', 'in_progress', 'done', 'declined')),
        source TEXT NOT NULL DEFAULT 'board',
        author_id INTEGER,
        author_name TEXT,
        author_email TEXT,
        vote_count INTEGER NOT NULL DEFAULT 0,
        comment_count INTEGER NOT NULL DEFAULT 0,
        sentiment_score REAL,
        duplicate_of INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (author_id) REFERENCES users(id) ON DELETE SET NULL,
        FOREIGN KEY (duplicate_of) REFERENCES posts(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS votes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        post_id INTEGER NOT NULL,
        voter_key TEXT NOT NULL,
        user_id INTEGER,
        created_at TEXT NOT NULL,
        UNIQUE (post_id, voter_key),
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        post_id INTEGER NOT NULL,
        author_id INTEGER,
        author_name TEXT,
        body TEXT NOT NULL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
        FOREIGN KEY (author_id) REFERENCES users(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS post_priority_scores (
        post_id INTEGER PRIMARY KEY,
        strategy TEXT NOT NULL,
        scores TEXT NOT NULL,
        weighted_score REAL NOT NULL,
        priority_level TEXT NOT NULL,
        quarter_recommendation TEXT,
        business_justification TEXT,
        suggested_action TEXT,
        estimated_days INTEGER,
        is_bug INTEGER NOT NULL DEFAULT 0,
        scored_at TEXT NOT NULL,
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS theme_clusters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        cluster_name TEXT NOT NULL,
        description TEXT,
        theme_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, cluster_name),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS themes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        theme_name TEXT NOT NULL COLLATE NOCASE,
        description TEXT NOT NULL DEFAULT '',
        frequency INTEGER NOT NULL DEFAULT 0,
        avg_sentiment REAL NOT NULL DEFAULT 0,
        first_seen TEXT NOT NULL,
        last_seen TEXT NOT NULL,
        is_emerging INTEGER NOT NULL DEFAULT 0,
        cluster_id INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, theme_name),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (cluster_id) REFERENCES theme_clusters(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS feedback_themes (
        post_id INTEGER NOT NULL,
        theme_id INTEGER NOT NULL,
        confidence REAL NOT NULL DEFAULT 1.0,
        PRIMARY KEY (post_id, theme_id),
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS roadmap_suggestions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        theme_id INTEGER NOT NULL,
        priority_score REAL NOT NULL,
        priority_level TEXT NOT NULL,
        frequency_score REAL NOT NULL,
        sentiment_score REAL NOT NULL,
        business_impact_score REAL NOT NULL,
        effort_score REAL NOT NULL,
        competitive_score REAL NOT NULL,
        estimated_effort TEXT NOT NULL,
        generated_at TEXT NOT NULL,
        UNIQUE (project_id, theme_id),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (theme_id) REFERENCES themes(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS roadmap_generation_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        themes_analyzed INTEGER NOT NULL DEFAULT 0,
        suggestions_generated INTEGER NOT NULL DEFAULT 0,
        generation_time_ms INTEGER NOT NULL DEFAULT 0,
        success INTEGER NOT NULL,
        error_message TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS experiments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        hypothesis TEXT,
        goal_event TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'running', 'completed')),
        started_at TEXT,
        ended_at TEXT,
        created_by INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS experiment_variants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        experiment_id INTEGER NOT NULL,
        variant_key TEXT NOT NULL,
        name TEXT NOT NULL,
        traffic_percentage INTEGER NOT NULL CHECK (traffic_percentage BETWEEN 0 AND 100),
        is_control INTEGER NOT NULL DEFAULT 0,
        config TEXT NOT NULL DEFAULT '{}',
        UNIQUE (experiment_id, variant_key),
        FOREIGN KEY (experiment_id) REFERENCES experiments(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS experiment_assignments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        experiment_id INTEGER NOT NULL,
        variant_id INTEGER NOT NULL,
        visitor_id TEXT NOT NULL,
        assigned_at TEXT NOT NULL,
        UNIQUE (experiment_id, visitor_id),
        FOREIGN KEY (experiment_id) REFERENCES experiments(id) ON DELETE CASCADE,
        FOREIGN KEY (variant_id) REFERENCES experiment_variants(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS experiment_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        experiment_id INTEGER NOT NULL,
        variant_id INTEGER NOT NULL,
        visitor_id TEXT NOT NULL,
        event_type TEXT NOT NULL CHECK (event_type IN ('pageview', 'click', 'conversion', 'custom')),
        event_name TEXT NOT NULL,
        event_value REAL,
        created_at TEXT NOT NULL,
        FOREIGN KEY (experiment_id) REFERENCES experiments(id) ON DELETE CASCADE,
        FOREIGN KEY (variant_id) REFERENCES experiment_variants(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS surveys (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'active', 'closed')),
        thank_you_message TEXT NOT NULL DEFAULT 'Thank you for your feedback!',
        closes_at TEXT,
        allow_anonymous INTEGER NOT NULL DEFAULT 1,
        response_count INTEGER NOT NULL DEFAULT 0,
        avg_sentiment REAL,
        created_by INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (created_by) REFERENCES users(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS survey_questions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        survey_id INTEGER NOT NULL,
        question_type TEXT NOT NULL
            CHECK (question_type IN ('text', 'single_select', 'multi_select', 'rating', 'nps')),
        question_text TEXT NOT NULL,
        options TEXT,
        required INTEGER NOT NULL DEFAULT 0,
        min_value INTEGER NOT NULL DEFAULT 1,
        max_value INTEGER NOT NULL DEFAULT 5,
        display_order INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (survey_id) REFERENCES surveys(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS survey_responses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        survey_id INTEGER NOT NULL,
        respondent_hash TEXT NOT NULL,
        respondent_email TEXT,
        answers TEXT NOT NULL,
        sentiment_score REAL,
        created_at TEXT NOT NULL,
        UNIQUE (survey_id, respondent_hash),
        FOREIGN KEY (survey_id) REFERENCES surveys(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS webhooks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        url TEXT NOT NULL,
        events TEXT NOT NULL,
        secret TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        failure_count INTEGER NOT NULL DEFAULT 0,
        last_delivery_at TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS webhook_deliveries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        webhook_id INTEGER NOT NULL,
        event TEXT NOT NULL,
        status_code INTEGER,
        success INTEGER NOT NULL,
        error TEXT,
        duration_ms INTEGER,
        created_at TEXT NOT NULL,
        FOREIGN KEY (webhook_id) REFERENCES webhooks(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS billing_profiles (
        project_id INTEGER PRIMARY KEY,
        plan TEXT NOT NULL DEFAULT 'free' CHECK (plan IN ('free', 'pro')),
        billing_cycle TEXT,
        subscription_status TEXT,
        stripe_customer_id TEXT,
        subscription_id TEXT,
        current_period_end TEXT,
        cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
        is_trial INTEGER NOT NULL DEFAULT 0,
        trial_status TEXT,
        trial_start_date TEXT,
        trial_end_date TEXT,
        trial_cancelled_at TEXT,
        upgraded_at TEXT,
        downgraded_at TEXT,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS billing_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER,
        event_type TEXT NOT NULL,
        stripe_event_id TEXT,
        stripe_customer_id TEXT,
        amount INTEGER,
        currency TEXT,
        metadata TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS gift_subscriptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender_id INTEGER,
        recipient_email TEXT NOT NULL,
        recipient_id INTEGER,
        claim_token TEXT UNIQUE NOT NULL,
        duration_months INTEGER NOT NULL DEFAULT 1,
        gift_message TEXT,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'claimed', 'expired', 'cancelled')),
        expires_at TEXT,
        claimed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (sender_id) REFERENCES users(id) ON DELETE SET NULL,
        FOREIGN KEY (recipient_id) REFERENCES users(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS ai_usage (
        project_id INTEGER NOT NULL,
        month TEXT NOT NULL,
        usage_count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (project_id, month),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS hunter_configs (
        project_id INTEGER PRIMARY KEY,
        product_name TEXT NOT NULL,
        product_description TEXT,
        keywords TEXT NOT NULL DEFAULT '[]',
        competitors TEXT NOT NULL DEFAULT '[]',
        excluded_terms TEXT NOT NULL DEFAULT '[]',
        platforms TEXT NOT NULL DEFAULT '[]',
        is_active INTEGER NOT NULL DEFAULT 1,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS hunter_scans (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'running'
            CHECK (status IN ('running', 'complete', 'partial', 'failed', 'cancelled')),
        platforms TEXT NOT NULL,
        platform_status TEXT NOT NULL DEFAULT '{}',
        total_discovered INTEGER NOT NULL DEFAULT 0,
        total_relevant INTEGER NOT NULL DEFAULT 0,
        total_classified INTEGER NOT NULL DEFAULT 0,
        triggered_by INTEGER,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS hunter_jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        scan_id INTEGER NOT NULL,
        project_id INTEGER NOT NULL,
        job_type TEXT NOT NULL CHECK (job_type IN ('discovery', 'relevance', 'classify')),
        platform TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'processing', 'complete', 'failed')),
        locked_by TEXT,
        locked_at TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 3,
        error TEXT,
        next_retry_at TEXT,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        FOREIGN KEY (scan_id) REFERENCES hunter_scans(id) ON DELETE CASCADE,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS hunter_raw_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        scan_id INTEGER NOT NULL,
        project_id INTEGER NOT NULL,
        platform TEXT NOT NULL,
        external_id TEXT NOT NULL,
        external_url TEXT,
        title TEXT,
        content TEXT NOT NULL,
        author TEXT,
        posted_at TEXT,
        raw_metadata TEXT,
        relevance_score REAL,
        relevance_decision TEXT CHECK (relevance_decision IN ('include', 'exclude', 'human_review')),
        relevance_reason TEXT,
        classification TEXT,
        stage TEXT NOT NULL DEFAULT 'discovered'
            CHECK (stage IN ('discovered', 'filtered', 'classified', 'stored', 'excluded')),
        created_at TEXT NOT NULL,
        UNIQUE (scan_id, platform, external_id),
        FOREIGN KEY (scan_id) REFERENCES hunter_scans(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS discovered_feedback (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        platform TEXT NOT NULL,
        platform_id TEXT NOT NULL,
        platform_url TEXT,
        title TEXT,
        content TEXT NOT NULL,
        author_username TEXT,
        discovered_at TEXT NOT NULL,
        processing_status TEXT NOT NULL DEFAULT 'pending'
            CHECK (processing_status IN ('pending', 'processing', 'complete', 'failed')),
        classification TEXT,
        classification_confidence REAL,
        sentiment_score REAL,
        sentiment_label TEXT,
        urgency_score INTEGER,
        tags TEXT NOT NULL DEFAULT '[]',
        relevance_score REAL,
        relevance_reasoning TEXT,
        needs_review INTEGER NOT NULL DEFAULT 0,
        is_archived INTEGER NOT NULL DEFAULT 0,
        post_id INTEGER,
        processed_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (project_id, platform, platform_id),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE SET NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS competitors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        name TEXT NOT NULL COLLATE NOCASE,
        auto_detected INTEGER NOT NULL DEFAULT 1,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'monitoring', 'dismissed')),
        total_mentions INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, name),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS competitor_mentions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        competitor_id INTEGER NOT NULL,
        feedback_id INTEGER,
        post_id INTEGER,
        mention_type TEXT NOT NULL
            CHECK (mention_type IN ('comparison', 'switch_to', 'switch_from', 'feature_comparison', 'general')),
        context TEXT NOT NULL,
        sentiment_vs_us REAL NOT NULL DEFAULT 0,
        feature_name TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
        FOREIGN KEY (competitor_id) REFERENCES competitors(id) ON DELETE CASCADE,
        FOREIGN KEY (feedback_id) REFERENCES discovered_feedback(id) ON DELETE CASCADE,
        FOREIGN KEY (post_id) REFERENCES posts(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS feature_gaps (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        feature_name TEXT NOT NULL COLLATE NOCASE,
        mention_count INTEGER NOT NULL DEFAULT 0,
        competitors TEXT NOT NULL DEFAULT '[]',
        user_quotes TEXT NOT NULL DEFAULT '[]',
        priority TEXT NOT NULL CHECK (priority IN ('critical', 'high', 'medium', 'low')),
        status TEXT NOT NULL DEFAULT 'identified'
            CHECK (status IN ('identified', 'planned', 'in_progress', 'shipped', 'dismissed')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, feature_name),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS daily_briefings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        briefing_date TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE (project_id, briefing_date),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS cron_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id TEXT NOT NULL,
        job_path TEXT NOT NULL,
        status_code INTEGER,
        success INTEGER NOT NULL,
        duration_ms INTEGER NOT NULL,
        error TEXT,
        created_at TEXT NOT NULL
    )
    ''',
]

INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id)',
    'CREATE INDEX IF NOT EXISTS idx_posts_project_status ON posts(project_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(project_id, created_at)',
    'CREATE INDEX IF NOT EXISTS idx_votes_post ON votes(post_id)',
    'CREATE INDEX IF NOT EXISTS idx_comments_post ON comments(post_id)',
    'CREATE INDEX IF NOT EXISTS idx_themes_project ON themes(project_id, frequency)',
    'CREATE INDEX IF NOT EXISTS idx_experiment_events_variant ON experiment_events(experiment_id, variant_id)',
    'CREATE INDEX IF NOT EXISTS idx_survey_responses_survey ON survey_responses(survey_id)',
    'CREATE INDEX IF NOT EXISTS idx_webhooks_project ON webhooks(project_id)',
    'CREATE INDEX IF NOT EXISTS idx_gifts_recipient ON gift_subscriptions(recipient_email, status)',
    'CREATE INDEX IF NOT EXISTS idx_hunter_jobs_claim ON hunter_jobs(job_type, status, created_at)',
    'CREATE INDEX IF NOT EXISTS idx_raw_items_stage ON hunter_raw_items(scan_id, platform, stage)',
    'CREATE INDEX IF NOT EXISTS idx_discovered_status ON discovered_feedback(processing_status, created_at)',
    'CREATE INDEX IF NOT EXISTS idx_mentions_competitor ON competitor_mentions(competitor_id)',
]


def init_db():
    """Create every table and index, and bootstrap the default admin account."""
    conn = db_connect()
    c = conn.cursor()

    for statement in SCHEMA:
        c.execute(statement)
    for statement in INDEXES:
        c.execute(statement)

    c.execute('SELECT id FROM users WHERE email = ?', (current_app.config['ADMIN_EMAIL'],))
    if not c.fetchone():
        c.execute(
            '''
            INSERT INTO users (email, name, password_hash, is_admin, created_at)
            VALUES (?, ?, ?, 1, ?)
            ''',
            (
                current_app.config['ADMIN_EMAIL'],
                'Administrator',
                generate_password_hash(current_app.config['ADMIN_PASSWORD']),
                utcnow_iso(),
            ),
        )

    conn.commit()
    conn.close()
