"""Surveys: definitions, validated public responses and aggregated results."""

import hashlib
import logging
import sqlite3
from collections import Counter

from flask import abort

from db import db_connect, from_json, parse_ts, row_to_dict, rows_to_dicts, to_json, utcnow, utcnow_iso
from services.sentiment import analyze_sentiment
from services.text import clean_text

logger = logging.getLogger(__name__)

QUESTION_TYPES = ('text', 'single_select', 'multi_select', 'rating', 'nps')
SELECT_TYPES = ('single_select', 'multi_select')
SURVEY_STATUSES = ('draft', 'active', 'closed')
MAX_QUESTIONS = 50
MAX_OPTIONS = 20
MAX_TEXT_ANSWER_LENGTH = 5000
RECENT_TEXT_ANSWERS = 10


def _validate_question(question, index):
    if not isinstance(question, dict):
        return None, f'Question {index + 1} must be an object.'
    qtype = question.get('question_type') or question.get('type')
    text = clean_text(question.get('question_text') or question.get('text'), 500)
    if qtype not in QUESTION_TYPES:
        return None, f"Question {index + 1}: type must be one of {', '.join(QUESTION_TYPES)}."
    if not text:
        return None, f'Question {index + 1}: text is required.'

    cleaned = {
        'question_type': qtype,
        'question_text': text,
        'options': None,
        'required': bool(question.get('required')),
        'min_value': 1,
        'max_value': 5,
        'display_order': index,
    }
    if qtype in SELECT_TYPES:
        options = question.get('options')
        if not isinstance(options, list):
            return None, f'Question {index + 1}: options are required for select questions.'
        options = [clean_text(str(o), 200) for o in options if clean_text(str(o), 200)]
        if not 2 <= len(options) <= MAX_OPTIONS or len(set(options)) != len(options):
            return None, f'Question {index + 1}: provide 2-{MAX_OPTIONS} distinct options.'
        cleaned['options'] = options
    elif qtype == 'nps':
        cleaned.update(min_value=0, max_value=10)
    elif qtype == 'rating':
        try:
            low = int(question.get('min_value', 1))
            high = int(question.get('max_value', 5))
        except (TypeError, ValueError):
            return None, f'Question {index + 1}: rating bounds must be integers.'
        if not 0 <= low < high <= 10:
            return None, f'Question {index + 1}: rating bounds must satisfy 0 <= min < max <= 10.'
        cleaned.update(min_value=low, max_value=high)
    return cleaned, None


def validate_survey_input(data):
    """Return (cleaned, errors) for a survey definition."""
    errors = {}
    title = clean_text(data.get('title'), 200)
    if not title:
        errors['title'] = 'Title is required.'

    closes_at = None
    if data.get('closes_at'):
        parsed = parse_ts(data['closes_at'])
        if not parsed:
            errors['closes_at'] = 'closes_at must be an ISO-8601 timestamp.'
        else:
            closes_at = parsed.isoformat()

    questions = data.get('questions')
    cleaned_questions = []
    if not isinstance(questions, list) or not 1 <= len(questions) <= MAX_QUESTIONS:
        errors['questions'] = f'Provide between 1 and {MAX_QUESTIONS} questions.'
    else:
        for index, question in enumerate(questions):
            cleaned, error = _validate_question(question, index)
            if error:
                errors['questions'] = error
                break
            cleaned_questions.append(cleaned)

    return {
        'title': title,
        'description': clean_text(data.get('description'), 2000) or None,
        'thank_you_message': clean_text(data.get('thank_you_message'), 500) or 'Thank you for your feedback!',
        'closes_at': closes_at,
        'allow_anonymous': bool(data.get('allow_anonymous', True)),
        'questions': cleaned_questions,
    }, errors


def _load_questions(c, survey_id):
    c.execute(
        'SELECT * FROM survey_questions WHERE survey_id = ? ORDER BY display_order, id',
        (survey_id,),
    )
    questions = rows_to_dicts(c.fetchall(), json_fields=('options',))
    for question in questions:
        question['required'] = bool(question['required'])
    return questions


def create_survey(project_id, cleaned, user_id=None):
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        INSERT INTO surveys (
            project_id, title, description, status, thank_you_message, closes_at,
            allow_anonymous, created_by, created_at, updated_at
        )
        VALUES (?, ?, ?, 'draft', ?, ?, ?, ?, ?, ?)
        ''',
        (
            project_id, cleaned['title'], cleaned['description'], cleaned['thank_you_message'],
            cleaned['closes_at'], int(cleaned['allow_anonymous']), user_id, now, now,
        ),
    )
    survey_id = c.lastrowid
    c.executemany(
        '''
        INSERT INTO survey_questions (
            survey_id, question_type, question_text, options, required, min_value, max_value, display_order
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''',
        [
            (
                survey_id, q['question_type'], q['question_text'],
                to_json(q['options']) if q['options'] is not None else None,
                int(q['required']), q['min_value'], q['max_value'], q['display_order'],
            )
            for q in cleaned['questions']
        ],
    )
    conn.commit()
    conn.close()
    logger.info('Survey %s created in project %s', survey_id, project_id)
    return get_survey(survey_id)


def get_survey(survey_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM surveys WHERE id = ?', (survey_id,))
    survey = row_to_dict(c.fetchone())
    if not survey:
        conn.close()
        abort(404, description='Survey not found')
    survey['allow_anonymous'] = bool(survey['allow_anonymous'])
    survey['questions'] = _load_questions(c, survey_id)
    conn.close()
    return survey


def list_surveys(project_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT * FROM surveys WHERE project_id = ? ORDER BY created_at DESC', (project_id,))
    surveys = rows_to_dicts(c.fetchall())
    conn.close()
    return surveys


def update_status(survey, status):
    if status not in SURVEY_STATUSES:
        abort(400, description=f"status must be one of: {', '.join(SURVEY_STATUSES)}")
    now = utcnow_iso()
    conn = db_connect()
    c = conn.cursor()
    c.execute('UPDATE surveys SET status = ?, updated_at = ? WHERE id = ?', (status, now, survey['id']))
    conn.commit()
    conn.close()
    survey.update({'status': status, 'updated_at': now})
    return survey


def delete_survey(survey):
    conn = db_connect()
    c = conn.cursor()
    c.execute('DELETE FROM surveys WHERE id = ?', (survey['id'],))
    conn.commit()
    conn.close()


def is_open(survey, now=None):
    if survey['status'] != 'active':
        return False
    closes_at = parse_ts(survey.get('closes_at'))
    return not (closes_at and closes_at <= (now or utcnow()))


def respondent_hash(survey_id, respondent_key):
    return hashlib.sha256(f'{survey_id}:{respondent_key}'.encode('utf-8')).hexdigest()


def _validate_answer(question, value):
    qtype = question['question_type']
    if qtype == 'text':
        if not isinstance(value, str):
            return None, 'must be text'
        text = clean_text(value, MAX_TEXT_ANSWER_LENGTH)
        return (text or None), None
    if qtype == 'single_select':
        if value not in (question['options'] or []):
            return None, 'must be one of the listed options'
        return value, None
    if qtype == 'multi_select':
        if not isinstance(value, list) or not value:
            return None, 'must be a non-empty list of options'
        if any(v not in (question['options'] or []) for v in value):
            return None, 'contains an option that is not listed'
        return list(dict.fromkeys(value)), None
    # rating and nps
    if isinstance(value, bool):
        return None, 'must be a whole number'
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None, 'must be a whole number'
    if number != value and str(number) != str(value):
        return None, 'must be a whole number'
    if not question['min_value'] <= number <= question['max_value']:
        return None, f"must be between {question['min_value']} and {question['max_value']}"
    return number, None


def validate_answers(questions, answers):
    """Return (cleaned, errors); answers are keyed by question id."""
    if not isinstance(answers, dict):
        return {}, {'answers': 'Answers must be an object keyed by question id.'}
    cleaned = {}
    errors = {}
    for question in questions:
        key = str(question['id'])
        value = answers.get(key, answers.get(question['id']))
        if value in (None, '', []):
            if question['required']:
                errors[key] = 'This question is required.'
            continue
        answer, error = _validate_answer(question, value)
        if error:
            errors[key] = f'Answer {error}.'
        elif answer is not None:
            cleaned[key] = answer
        elif question['required']:
            errors[key] = 'This question is required.'
    return cleaned, errors


def submit_response(survey, answers, respondent_key, respondent_email=None):
    """Store one response per respondent and refresh the survey aggregates."""
    text_ids = {str(q['id']) for q in survey['questions'] if q['question_type'] == 'text'}
    text_answers = [value for key, value in answers.items() if key in text_ids and isinstance(value, str)]
    sentiment = analyze_sentiment(' '.join(text_answers))['score'] if text_answers else None

    conn = db_connect()
    c = conn.cursor()
    try:
        c.execute(
            '''
            INSERT INTO survey_responses (survey_id, respondent_hash, respondent_email, answers, sentiment_score, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ''',
            (
                survey['id'], respondent_hash(survey['id'], respondent_key), respondent_email,
                to_json(answers), sentiment, utcnow_iso(),
            ),
        )
    except sqlite3.IntegrityError:
        conn.close()
        abort(409, description='You have already responded to this survey')
    response_id = c.lastrowid
    c.execute(
        '''
        UPDATE surveys
        SET response_count = (SELECT COUNT(*) FROM survey_responses WHERE survey_id = ?),
            avg_sentiment = (SELECT AVG(sentiment_score) FROM survey_responses
                             WHERE survey_id = ? AND sentiment_score IS NOT NULL),
            updated_at = ?
        WHERE id = ?
        ''',
        (survey['id'], survey['id'], utcnow_iso(), survey['id']),
    )
    conn.commit()
    conn.close()
    return {'id': response_id, 'sentiment_score': sentiment}


def nps_score(values):
    if not values:
        return None
    promoters = sum(1 for v in values if v >= 9)
    detractors = sum(1 for v in values if v <= 6)
    return round((promoters - detractors) / len(values) * 100)


def survey_results(survey):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT answers, sentiment_score, created_at FROM survey_responses WHERE survey_id = ? ORDER BY created_at DESC',
        (survey['id'],),
    )
    responses = [
        {'answers': from_json(row['answers'], {}), 'created_at': row['created_at']}
        for row in c.fetchall()
    ]
    conn.close()

    questions = []
    for question in survey['questions']:
        key = str(question['id'])
        values = [r['answers'][key] for r in responses if key in r['answers']]
        summary = {
            'question_id': question['id'],
            'question_text': question['question_text'],
            'question_type': question['question_type'],
            'answer_count': len(values),
        }
        qtype = question['question_type']
        if qtype in SELECT_TYPES:
            counts = Counter()
            for value in values:
                counts.update(value if isinstance(value, list) else [value])
            summary['option_counts'] = {option: counts.get(option, 0) for option in question['options'] or []}
        elif qtype in ('rating', 'nps'):
            numbers = [v for v in values if isinstance(v, (int, float))]
            summary['average'] = round(sum(numbers) / len(numbers), 2) if numbers else None
            summary['distribution'] = {
                str(n): numbers.count(n) for n in range(question['min_value'], question['max_value'] + 1)
            }
            if qtype == 'nps':
                summary['nps'] = nps_score(numbers)
                summary['promoters'] = sum(1 for v in numbers if v >= 9)
                summary['passives'] = sum(1 for v in numbers if 7 <= v <= 8)
                summary['detractors'] = sum(1 for v in numbers if v <= 6)
        else:
            summary['recent_answers'] = values[:RECENT_TEXT_ANSWERS]
        questions.append(summary)

    return {
        'survey_id': survey['id'],
        'response_count': len(responses),
        'avg_sentiment': survey.get('avg_sentiment'),
        'questions': questions,
    }
