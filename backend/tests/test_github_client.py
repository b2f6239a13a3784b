from datetime import date, timedelta

import httpx
import pytest

from amicooked.clients.github import GitHubAPIError, GitHubClient, derive_stats
from amicooked.services.github_stats import GitHubStatsService


def _weeks(daily_counts: list[int], start: date) -> list[dict]:
    days = [
        {'date': (start + timedelta(days=offset)).isoformat(), 'contributionCount': count}
        for offset, count in enumerate(daily_counts)
    ]
    return [{'contributionDays': days[index:index + 7]} for index in range(0, len(days), 7)]


START = date(2026, 1, 5)
# 3 weeks: active, idle, active; ends on a 3-day streak
DAILY = [1, 0, 2, 0, 0, 0, 1] + [0] * 7 + [0, 0, 0, 0, 3, 1, 2]

VIEWER = {
    'login': 'octocat',
    'name': 'Mona Octocat',
    'avatarUrl': 'https://avatars.example/octocat.png',
    'createdAt': '2021-04-01T00:00:00Z',
    'repositories': {
        'totalCount': 5,
        'nodes': [
            {'name': 'api', 'stargazerCount': 10, 'forkCount': 2, 'primaryLanguage': {'name': 'Python'}},
            {'name': 'cli', 'stargazerCount': 3, 'forkCount': 0, 'primaryLanguage': {'name': 'Python'}},
            {'name': 'web', 'stargazerCount': 1, 'forkCount': 1, 'primaryLanguage': {'name': 'TypeScript'}},
            {'name': 'svc', 'stargazerCount': 0, 'forkCount': 0, 'primaryLanguage': {'name': 'Go'}},
            {'name': 'notes', 'stargazerCount': 0, 'forkCount': 0, 'primaryLanguage': None},
        ],
    },
    'pullRequests': {'totalCount': 8},
    'mergedPullRequests': {'totalCount': 6},
    'issues': {'totalCount': 9},
    'openIssues': {'totalCount': 2},
    'closedIssues': {'totalCount': 7},
    'contributionsCollection': {
        'totalCommitContributions': 120,
        'contributionCalendar': {'totalContributions': 140, 'weeks': _weeks(DAILY, START)},
    },
}


def test_derive_stats_computes_profile_metrics():
    stats = derive_stats(VIEWER)

    assert stats.username == 'octocat'
    assert stats.total_repos == 5
    assert stats.total_stars == 14
    assert stats.total_forks == 3
    assert stats.languages == ['Python', 'TypeScript', 'Go']
    assert stats.language_count == 3
    assert stats.top_language_dominance_pct == 50.0
    assert stats.total_prs == 8
    assert stats.merged_prs == 6
    assert stats.issues_closed_ratio == 0.7
    assert stats.streak == 3
    assert stats.commits_last_365 == 120
    assert stats.commits_last_90 == sum(DAILY)
    assert stats.active_weeks_pct == 66.7
    assert stats.avg_commits_per_active_week == 5.0
    assert stats.longest_inactive_gap == 11


def test_commits_last_90_days_excludes_older_days():
    stats = derive_stats(VIEWER, today=START + timedelta(days=90 + 14))

    assert stats.commits_last_90 == 6


def test_stats_serialise_with_camel_case_keys():
    payload = derive_stats(VIEWER).model_dump(by_alias=True)

    assert payload['totalRepos'] == 5
    assert payload['mergedPRs'] == 6
    assert payload['longestInactiveGap'] == 11


@pytest.mark.asyncio
async def test_fetch_stats_sends_token_and_parses_viewer(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen['auth'] = request.headers['authorization']
        return httpx.Response(200, json={'data': {'viewer': VIEWER}})

    client = GitHubClient(settings, transport=httpx.MockTransport(handler))
    stats = await client.fetch_stats('gho_token')

    assert seen['auth'] == 'Bearer gho_token'
    assert stats.username == 'octocat'


@pytest.mark.asyncio
@pytest.mark.parametrize(
    'response, status_code',
    [
        (httpx.Response(401, json={'message': 'Bad credentials'}), 401),
        (httpx.Response(200, json={'errors': [{'message': 'Something went wrong'}]}), None),
        (httpx.Response(200, json={'data': {}}), None),
    ],
)
async def test_fetch_stats_errors(settings, response, status_code):
    client = GitHubClient(settings, transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(GitHubAPIError) as excinfo:
        await client.fetch_stats('gho_token')

    assert excinfo.value.status_code == status_code


class _CountingGitHubClient:
    def __init__(self) -> None:
        self.calls = 0

    async def fetch_stats(self, access_token: str):
        self.calls += 1
        return derive_stats(VIEWER)


@pytest.mark.asyncio
async def test_stats_are_cached_per_token(settings):
    client = _CountingGitHubClient()
    service = GitHubStatsService(client=client, settings=settings)

    first = await service.get_stats('token-a')
    second = await service.get_stats('token-a')
    await service.get_stats('token-b')
    await service.get_stats('token-a', force_refresh=True)

    assert first is second
    assert client.calls == 3
    await service.close()


@pytest.mark.asyncio
async def test_expired_stats_are_evicted(settings, monkeypatch):
    clock = {'now': 1000.0}
    monkeypatch.setattr('amicooked.services.github_stats.time.monotonic', lambda: clock['now'])
    client = _CountingGitHubClient()
    service = GitHubStatsService(client=client, settings=settings)

    await service.get_stats('token-a')
    await service.get_stats('token-b')
    clock['now'] += settings.github_cache_ttl_seconds + 1
    await service.get_stats('token-c')

    assert len(service._cache) == 1
    await service.get_stats('token-a')
    assert client.calls == 4
    assert len(service._cache) == 2
