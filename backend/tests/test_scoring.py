import json

import pytest

from amicooked.services.scoring import (
    CATEGORY_WEIGHTS,
    MalformedAIResponseError,
    derive_cooked_level,
    extract_json,
    level_name,
    parse_category_scores,
    parse_narrative,
    parse_projects,
    safe_parse_json,
)
from fakes import projects_reply


def _uniform(score: int) -> dict:
    return {key: score for key in CATEGORY_WEIGHTS}


def _payload(**overrides) -> dict:
    categories = {
        'activity': {'score': 80},
        'skillSignals': {'score': 60},
        'growth': {'score': 40},
        'collaboration': {'score': 100},
    }
    categories.update(overrides)
    return {'categoryScores': {key: value for key, value in categories.items() if value is not None}}


def test_weighted_level_for_mixed_scores():
    scores = {'activity': 80, 'skillSignals': 60, 'growth': 40, 'collaboration': 100}

    assert derive_cooked_level(scores) == 7
    assert level_name(7) == 'Toasted'


@pytest.mark.parametrize(
    'score, expected',
    [
        (0, 1), (14, 1), (15, 2), (64, 6), (65, 7), (69, 7), (70, 7),
        (71, 7), (74, 7), (75, 8), (94, 9), (95, 10), (100, 10),
    ],
)
def test_level_boundaries_round_half_up(score, expected):
    assert derive_cooked_level(_uniform(score)) == expected


def test_level_from_weighted_average_just_below_half():
    # 0.4*65 + 0.3*64 + 0.15*65 + 0.15*64 = 64.55
    assert derive_cooked_level({'activity': 65, 'skillSignals': 64, 'growth': 65, 'collaboration': 64}) == 6


@pytest.mark.parametrize(
    'level, name',
    [(10, 'Cooking'), (9, 'Cooking'), (8, 'Toasted'), (7, 'Toasted'), (6, 'Cooked'), (5, 'Cooked'),
     (4, 'Well-Done'), (3, 'Well-Done'), (2, 'Burnt'), (1, 'Burnt')],
)
def test_level_names(level, name):
    assert level_name(level) == name


def test_category_scores_are_parsed_with_weights():
    scores = parse_category_scores(_payload(activity={'score': 79.5, 'notes': ' busy '}))

    assert scores['activity'].score == 80
    assert scores['activity'].weight == 40
    assert scores['activity'].notes == 'busy'
    assert scores['collaboration'].weight == 15


def test_category_key_aliases_are_normalised():
    payload = {
        'categoryScores': {
            'Activity': {'score': 50},
            'skill_signals': {'score': 50},
            'growth': {'score': 50},
            'collab': {'score': 50},
        }
    }

    assert set(parse_category_scores(payload)) == set(CATEGORY_WEIGHTS)


@pytest.mark.parametrize(
    'payload',
    [
        _payload(growth=None),
        _payload(growth={'notes': 'no score given'}),
        _payload(growth={'score': '40'}),
        _payload(growth={'score': True}),
        _payload(growth={'score': 101}),
        _payload(growth={'score': -1}),
        {'summary': 'no scores at all'},
    ],
)
def test_invalid_category_scores_are_rejected(payload):
    with pytest.raises(MalformedAIResponseError):
        parse_category_scores(payload)


def test_safe_parse_json_repairs_common_mistakes():
    assert safe_parse_json('{"items": [1, 2,],}') == {'items': [1, 2]}
    assert safe_parse_json('{"summary": "line\x07 one"}') == {'summary': 'line one'}
    assert safe_parse_json(r'{"path": "C:\projects"}') == {'path': r'C:\projects'}
    assert safe_parse_json('not json at all') is None


def test_extract_json_ignores_surrounding_prose():
    text = 'Sure! Here is your analysis:\n```json\n{"summary": "ok", "recommendations": ["a"]}\n```\nGood luck!'

    assert extract_json(text) == {'summary': 'ok', 'recommendations': ['a']}
    assert extract_json('Projects: [{"name": "x"}] done', kind='array') == [{'name': 'x'}]
    with pytest.raises(MalformedAIResponseError):
        extract_json('I cannot help with that.')
    with pytest.raises(MalformedAIResponseError):
        extract_json('{"a": }')


def test_narrative_requires_summary_and_bounded_recommendations():
    narrative = parse_narrative({'summary': ' Fine. ', 'recommendations': ['one', ' ', 'two']})
    assert narrative['summary'] == 'Fine.'
    assert narrative['recommendations'] == ['one', 'two']

    with pytest.raises(MalformedAIResponseError):
        parse_narrative({'recommendations': ['one']})
    with pytest.raises(MalformedAIResponseError):
        parse_narrative({'summary': 'x', 'recommendations': []})
    with pytest.raises(MalformedAIResponseError):
        parse_narrative({'summary': 'x', 'recommendations': [str(n) for n in range(7)]})


def test_projects_are_truncated_to_four():
    projects = parse_projects(json.loads(projects_reply(count=5)))

    assert [project.name for project in projects] == ['Project 1', 'Project 2', 'Project 3', 'Project 4']
    assert projects[0].suggested_stack[0].name == 'Tool 0'


def test_string_stack_entries_are_normalised():
    raw = json.loads(projects_reply())
    raw[0]['suggestedStack'] = ['FastAPI', 'PostgreSQL']

    projects = parse_projects(raw)

    assert [entry.name for entry in projects[0].suggested_stack] == ['FastAPI', 'PostgreSQL']


@pytest.mark.parametrize('count, stack_size', [(3, 2), (4, 0), (4, 7)])
def test_project_bounds_are_enforced(count, stack_size):
    with pytest.raises(MalformedAIResponseError):
        parse_projects(json.loads(projects_reply(count=count, stack_size=stack_size)))


def test_project_without_name_is_rejected():
    raw = json.loads(projects_reply())
    raw[2]['name'] = '  '

    with pytest.raises(MalformedAIResponseError):
        parse_projects(raw)
