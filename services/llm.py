"""Thin wrapper around OpenAI chat completions returning parsed JSON objects."""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

import openai
from flask import current_app

logger = logging.getLogger(__name__)

_client = None
_client_key = None


class LLMError(Exception):
    """Raised when a completion cannot be obtained or parsed."""


def is_enabled() -> bool:
    return bool(current_app.config.get('OPENAI_API_KEY'))


def _get_client():
    global _client, _client_key
    api_key = current_app.config.get('OPENAI_API_KEY')
    if not api_key:
        raise LLMError('OPENAI_API_KEY is not configured')
    if _client is None or _client_key != api_key:
        _client = openai.OpenAI(api_key=api_key, timeout=current_app.config.get('LLM_TIMEOUT', 30))
        _client_key = api_key
    return _client


def complete_json(system_prompt: str, user_prompt: str, *, model: Optional[str] = None,
                  temperature: float = 0.2, max_tokens: int = 1200) -> dict:
    """Run a JSON-mode completion and return the decoded object."""
    client = _get_client()
    model_id = model or current_app.config.get('OPENAI_MODEL', 'gpt-4o-mini')
    started = time.time()

    try:
        completion = client.chat.completions.create(
            model=model_id,
            messages=[
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={'type': 'json_object'},
        )
    except openai.OpenAIError as exc:
        logger.error('OpenAI API error (%s): %s', model_id, exc)
        raise LLMError(str(exc)) from exc

    content = ''
    if completion.choices:
        content = completion.choices[0].message.content or ''

    try:
        data = json.loads(content)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning('LLM returned non-JSON content (%s chars)', len(content))
        raise LLMError('LLM response was not valid JSON') from exc

    if not isinstance(data, dict):
        raise LLMError('LLM response was not a JSON object')

    logger.info('LLM completion model=%s duration_ms=%s', model_id, int((time.time() - started) * 1000))
    return data
