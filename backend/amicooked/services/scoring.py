"""Parsing, validation and deterministic scoring of AI analysis output.

The AI supplies four 0-100 category scores. Everything derived from them
(``cookedLevel`` and ``levelName``) is computed here, so the same scores
always produce the same level regardless of model.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from ..models.analysis import CategoryScore, Project

logger = logging.getLogger(__name__)

CATEGORY_WEIGHTS: Dict[str, int] = {
    'activity': 40,
    'skillSignals': 30,
    'growth': 15,
    'collaboration': 15,
}

LEVEL_NAMES = (
    (9, 'Cooking'),
    (7, 'Toasted'),
    (5, 'Cooked'),
    (3, 'Well-Done'),
    (1, 'Burnt'),
)

KEY_ALIASES = {
    'skillsignals': 'skillSignals',
    'skillsignal': 'skillSignals',
    'skill': 'skillSignals',
    'skills': 'skillSignals',
    'collab': 'collaboration',
    'collaborations': 'collaboration',
    'grow': 'growth',
    'activities': 'activity',
    'activity': 'activity',
    'growth': 'growth',
    'collaboration': 'collaboration',
}

MAX_RECOMMENDATIONS = 6
MIN_STACK_ENTRIES = 1
MAX_STACK_ENTRIES = 6
PROJECT_COUNT = 4

_TRAILING_COMMA = re.compile(r',\s*([\]}])')
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
_BAD_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')


class MalformedAIResponseError(ValueError):
    """The AI reply could not be parsed or failed validation."""


def safe_parse_json(raw: str) -> Any | None:
    """Parse JSON, repairing the mistakes models commonly make. Returns None if nothing works."""
    candidates = [raw]
    cleaned = _TRAILING_COMMA.sub(r'\1', raw)
    candidates.append(cleaned)
    cleaned = _CONTROL_CHARS.sub('', cleaned)
    candidates.append(cleaned)
    candidates.append(_BAD_ESCAPE.sub(r'\\\\', cleaned))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def extract_json(text: str, kind: str = 'object') -> Any:
    """Pull the outermost JSON object (or array) out of free-form model text."""
    opener, closer = ('{', '}') if kind == 'object' else ('[', ']')
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        raise MalformedAIResponseError(f'No JSON {kind} found in AI response')
    parsed = safe_parse_json(text[start:end + 1])
    if parsed is None:
        raise MalformedAIResponseError(f'AI response JSON {kind} could not be parsed')
    expected = dict if kind == 'object' else list
    if not isinstance(parsed, expected):
        raise MalformedAIResponseError(f'AI response is not a JSON {kind}')
    return parsed


def canonical_category(key: str) -> str:
    compact = re.sub(r'[\s_-]', '', key).lower()
    return KEY_ALIASES.get(compact, key)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def parse_category_scores(payload: Mapping[str, Any]) -> Dict[str, CategoryScore]:
    raw = payload.get('categoryScores')
    if not isinstance(raw, dict):
        raise MalformedAIResponseError('categoryScores is missing')

    renamed = {canonical_category(str(key)): value for key, value in raw.items()}
    scores: Dict[str, CategoryScore] = {}
    for key, weight in CATEGORY_WEIGHTS.items():
        category = renamed.get(key)
        if not isinstance(category, dict) or not _is_number(category.get('score')):
            raise MalformedAIResponseError(f"category '{key}' is missing or has no numeric score")
        score = category['score']
        if score < 0 or score > 100:
            raise MalformedAIResponseError(f"category '{key}' score {score} is outside 0-100")
        scores[key] = CategoryScore(
            score=math.floor(score + 0.5),
            weight=weight,
            notes=str(category.get('notes') or '').strip(),
        )
    return scores


def derive_cooked_level(scores: Mapping[str, CategoryScore | int]) -> int:
    """Weighted average on [0,100] scaled to [1,10], rounded half up.

    Integer arithmetic keeps boundaries exact: a weighted average of 65.0
    is level 7, 64.9 is level 6.
    """
    weighted = 0
    for key, weight in CATEGORY_WEIGHTS.items():
        value = scores[key]
        score = value.score if isinstance(value, CategoryScore) else int(value)
        weighted += score * weight
    # weighted is the average times 100; the level is the average divided by 10
    level = (weighted + 500) // 1000
    return max(1, min(10, level))


def level_name(level: int) -> str:
    for threshold, name in LEVEL_NAMES:
        if level >= threshold:
            return name
    return LEVEL_NAMES[-1][1]


def parse_recommendations(payload: Mapping[str, Any]) -> List[str]:
    raw = payload.get('recommendations')
    if not isinstance(raw, list):
        raise MalformedAIResponseError('recommendations must be a list')
    items = [str(item).strip() for item in raw if str(item).strip()]
    if not 1 <= len(items) <= MAX_RECOMMENDATIONS:
        raise MalformedAIResponseError(
            f'expected 1-{MAX_RECOMMENDATIONS} recommendations, got {len(items)}'
        )
    return items


def parse_narrative(payload: Mapping[str, Any]) -> Dict[str, Any]:
    summary = str(payload.get('summary') or '').strip()
    if not summary:
        raise MalformedAIResponseError('summary is missing')
    return {
        'summary': summary,
        'recommendations': parse_recommendations(payload),
        'projects_insight': str(payload.get('projectsInsight') or '').strip(),
        'language_insight': str(payload.get('languageInsight') or '').strip(),
        'activity_insight': str(payload.get('activityInsight') or '').strip(),
    }


def _normalise_stack(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    entries = []
    for item in raw:
        if isinstance(item, str) and item.strip():
            entries.append({'name': item.strip(), 'description': ''})
        elif isinstance(item, dict) and str(item.get('name') or '').strip():
            entries.append({'name': str(item['name']).strip(), 'description': str(item.get('description') or '')})
    return entries


def parse_projects(raw: Any) -> List[Project]:
    if not isinstance(raw, list):
        raise MalformedAIResponseError('projects must be a JSON array')
    if len(raw) < PROJECT_COUNT:
        raise MalformedAIResponseError(f'expected {PROJECT_COUNT} projects, got {len(raw)}')

    projects: List[Project] = []
    for index, item in enumerate(raw[:PROJECT_COUNT]):
        if not isinstance(item, dict):
            raise MalformedAIResponseError(f'project {index} is not an object')
        stack = _normalise_stack(item.get('suggestedStack'))
        if not MIN_STACK_ENTRIES <= len(stack) <= MAX_STACK_ENTRIES:
            raise MalformedAIResponseError(
                f'project {index} has {len(stack)} stack entries; expected '
                f'{MIN_STACK_ENTRIES}-{MAX_STACK_ENTRIES}'
            )
        try:
            projects.append(Project.model_validate({**item, 'suggestedStack': stack}))
        except ValidationError as exc:
            raise MalformedAIResponseError(f'project {index} is invalid: {exc.errors()[0]["msg"]}') from exc
    return projects
