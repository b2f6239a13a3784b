import json
from typing import Any, Dict, List, Optional

from amicooked.clients.openrouter import AICallError
from amicooked.models.analysis import GitHubStats, UserProfile

SAMPLE_STATS = GitHubStats(
    username='octocat',
    name='Mona Octocat',
    total_repos=12,
    total_commits=340,
    commits_last_365=340,
    commits_last_90=61,
    total_prs=14,
    merged_prs=11,
    total_issues=9,
    open_issues=2,
    closed_issues=7,
    total_stars=25,
    total_forks=4,
    languages=['Python', 'TypeScript', 'Go'],
    streak=4,
)

SAMPLE_PROFILE = UserProfile(
    education='BSc Computer Science (in progress)',
    experience_years='1-2',
    career_goal='Backend engineer',
    technical_skills='Python, SQL, FastAPI',
)


class FakeAIClient:
    """Scripted stand-in for the OpenRouter client. Exceptions in ``replies`` are raised in turn."""

    def __init__(self, replies: Optional[List[Any]] = None, default_model: str = 'openrouter/free') -> None:
        self.replies = list(replies or [])
        self.calls: List[Dict[str, Any]] = []
        self._default_model = default_model

    @property
    def default_model(self) -> str:
        return self._default_model

    async def complete(self, prompt, system_prompt='', model=None, on_chunk=None) -> str:
        self.calls.append({'prompt': prompt, 'system_prompt': system_prompt, 'model': model})
        if not self.replies:
            raise AICallError('no scripted reply left')
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def scores_reply(activity=55, skill_signals=70, growth=30, collaboration=45, **extra) -> str:
    payload = {
        'categoryScores': {
            'activity': {'score': activity, 'notes': 'steady weekly commits'},
            'skillSignals': {'score': skill_signals, 'notes': 'three languages, tested repos'},
            'growth': {'score': growth, 'notes': 'flat year over year'},
            'collaboration': {'score': collaboration, 'notes': 'a few merged PRs'},
        }
    }
    payload.update(extra)
    return 'Here are the scores:\n' + json.dumps(payload)


def narrative_reply(**extra) -> str:
    payload = {
        'summary': 'Consistent but narrow. Time to ship something people use.',
        'recommendations': ['Open-source one project', 'Write tests for your API repo'],
        'projectsInsight': 'Mostly tutorials.',
        'languageInsight': 'Python heavy.',
        'activityInsight': 'Commits cluster on weekends.',
    }
    payload.update(extra)
    return json.dumps(payload)


def single_phase_reply(**scores) -> str:
    payload = json.loads(narrative_reply())
    payload.update(json.loads(scores_reply(**scores).split('\n', 1)[1]))
    return json.dumps(payload)


def projects_reply(count: int = 4, stack_size: int = 2) -> str:
    projects = [
        {
            'name': f'Project {index}',
            'skill1': 'APIs',
            'skill2': 'Testing',
            'skill3': 'Deployment',
            'overview': 'A small service with a real user.',
            'alignment': 'Fills the collaboration gap.',
            'suggestedStack': [{'name': f'Tool {n}', 'description': 'core'} for n in range(stack_size)],
        }
        for index in range(1, count + 1)
    ]
    return json.dumps(projects)
