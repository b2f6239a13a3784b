from __future__ import annotations

import logging
import statistics
from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from ..models.analysis import GitHubStats

logger = logging.getLogger(__name__)

VIEWER_QUERY = """
query {
  viewer {
    login
    name
    avatarUrl
    createdAt
    repositories(first: 100, ownerAffiliations: OWNER, orderBy: {field: CREATED_AT, direction: DESC}) {
      totalCount
      nodes {
        name
        stargazerCount
        forkCount
        primaryLanguage { name }
      }
    }
    pullRequests(first: 1) { totalCount }
    mergedPullRequests: pullRequests(states: MERGED, first: 1) { totalCount }
    issues(first: 1) { totalCount }
    openIssues: issues(states: OPEN, first: 1) { totalCount }
    closedIssues: issues(states: CLOSED, first: 1) { totalCount }
    contributionsCollection {
      totalCommitContributions
      contributionCalendar {
        totalContributions
        weeks {
          contributionDays { contributionCount date }
        }
      }
    }
  }
}
"""


class GitHubAPIError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubClient:
    """Fetches the signed-in user's profile metrics via the GraphQL API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._url = settings.github_graphql_url
        self._timeout = settings.request_timeout
        self._transport = transport

    async def fetch_stats(self, access_token: str) -> GitHubStats:
        headers = {
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json={'query': VIEWER_QUERY}, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GitHubAPIError(
                f'GitHub API error: {exc.response.status_code}', status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f'GitHub request failed: {exc}') from exc

        payload: Dict[str, Any] = response.json()
        if payload.get('errors'):
            logger.error('GitHub GraphQL errors: %s', payload['errors'])
            raise GitHubAPIError('GitHub GraphQL query failed')
        viewer = (payload.get('data') or {}).get('viewer')
        if not viewer:
            raise GitHubAPIError('GitHub response did not include a viewer')
        return derive_stats(viewer)


def _count(node: Optional[Dict[str, Any]]) -> int:
    return int((node or {}).get('totalCount') or 0)


def _longest_zero_run(counts: List[int]) -> int:
    longest = current = 0
    for count in counts:
        if count == 0:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def derive_stats(viewer: Dict[str, Any], today: Optional[date] = None) -> GitHubStats:
    """Turn a raw ``viewer`` GraphQL node into the metric set the prompts consume."""
    repos: List[Dict[str, Any]] = (viewer.get('repositories') or {}).get('nodes') or []
    collection = viewer.get('contributionsCollection') or {}
    calendar = collection.get('contributionCalendar') or {}
    weeks = calendar.get('weeks') or []

    language_counts: Counter[str] = Counter(
        repo['primaryLanguage']['name'] for repo in repos if repo.get('primaryLanguage')
    )
    top_languages = [name for name, _ in language_counts.most_common(5)]
    languages_total = sum(language_counts.values())
    dominance = (
        round(language_counts.most_common(1)[0][1] / languages_total * 100, 1) if languages_total else None
    )

    days = sorted(
        (day for week in weeks for day in week.get('contributionDays') or []),
        key=lambda day: day['date'],
    )
    daily_counts = [int(day.get('contributionCount') or 0) for day in days]

    streak = 0
    for count in reversed(daily_counts):
        if count <= 0:
            break
        streak += 1

    reference = today or (date.fromisoformat(days[-1]['date']) if days else date.today())
    cutoff = reference - timedelta(days=90)
    commits_last_90 = sum(
        int(day.get('contributionCount') or 0) for day in days if date.fromisoformat(day['date']) > cutoff
    )

    weekly_totals = [
        sum(int(day.get('contributionCount') or 0) for day in week.get('contributionDays') or []) for week in weeks
    ]
    active_weeks = [total for total in weekly_totals if total > 0]
    active_weeks_pct = round(len(active_weeks) / len(weekly_totals) * 100, 1) if weekly_totals else 0.0
    avg_per_active_week = round(sum(active_weeks) / len(active_weeks), 1) if active_weeks else 0.0
    std_dev = round(statistics.pstdev(weekly_totals), 1) if weekly_totals else 0.0

    total_issues = _count(viewer.get('issues'))
    closed_issues = _count(viewer.get('closedIssues'))

    return GitHubStats(
        username=viewer.get('login'),
        name=viewer.get('name'),
        avatar_url=viewer.get('avatarUrl'),
        account_created=viewer.get('createdAt'),
        total_repos=_count(viewer.get('repositories')),
        total_commits=int(collection.get('totalCommitContributions') or 0),
        commits_last_365=int(collection.get('totalCommitContributions') or 0),
        commits_last_90=commits_last_90,
        total_prs=_count(viewer.get('pullRequests')),
        merged_prs=_count(viewer.get('mergedPullRequests')),
        total_issues=total_issues,
        open_issues=_count(viewer.get('openIssues')),
        closed_issues=closed_issues,
        issues_closed_ratio=round(closed_issues / (total_issues + 1), 2),
        total_stars=sum(int(repo.get('stargazerCount') or 0) for repo in repos),
        total_forks=sum(int(repo.get('forkCount') or 0) for repo in repos),
        languages=top_languages,
        language_count=len(language_counts),
        top_language_dominance_pct=dominance,
        streak=streak,
        total_contributions=calendar.get('totalContributions'),
        active_weeks_pct=active_weeks_pct,
        avg_commits_per_active_week=avg_per_active_week,
        std_dev_per_week=std_dev,
        longest_inactive_gap=_longest_zero_run(daily_counts),
    )
