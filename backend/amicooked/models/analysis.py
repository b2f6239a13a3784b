from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

NICKNAME_MAX_LENGTH = 20


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CategoryScore(_CamelModel):
    score: int = Field(ge=0, le=100)
    weight: int = Field(ge=0, le=100)
    notes: str = ''


class AnalysisResult(_CamelModel):
    """Output of one analysis run. ``cooked_level`` is always derived, never taken from the AI."""

    cooked_level: int = Field(alias='cookedLevel', ge=1, le=10)
    level_name: str = Field(alias='levelName')
    summary: str = ''
    recommendations: List[str] = Field(default_factory=list)
    projects_insight: str = Field(default='', alias='projectsInsight')
    language_insight: str = Field(default='', alias='languageInsight')
    activity_insight: str = Field(default='', alias='activityInsight')
    category_scores: Dict[str, CategoryScore] = Field(alias='categoryScores')
    model: Optional[str] = None
    mode: str = 'two_phase'
    analyzed_at: Optional[datetime] = Field(default=None, alias='analyzedAt')


class StackEntry(_CamelModel):
    name: str
    description: str = ''


class Project(_CamelModel):
    name: str
    skill1: str = ''
    skill2: str = ''
    skill3: str = ''
    overview: str = ''
    alignment: str = ''
    description: str = ''
    suggested_stack: List[StackEntry] = Field(default_factory=list, alias='suggestedStack')

    @field_validator('name', mode='before')
    @classmethod
    def normalize_name(cls, value: Any) -> str:
        cleaned = str(value or '').strip()
        if not cleaned:
            raise ValueError('project name is required')
        return cleaned


class GitHubStats(_CamelModel):
    """Metrics derived from the GitHub GraphQL API. Unknown keys are kept as-is."""

    model_config = ConfigDict(populate_by_name=True, extra='allow')

    username: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias='avatarUrl')
    account_created: Optional[str] = Field(default=None, alias='accountCreated')
    total_repos: int = Field(default=0, alias='totalRepos')
    total_commits: int = Field(default=0, alias='totalCommits')
    commits_last_365: Optional[int] = Field(default=None, alias='commitsLast365')
    commits_last_90: Optional[int] = Field(default=None, alias='commitsLast90')
    prev_year_commits: Optional[int] = Field(default=None, alias='prevYearCommits')
    total_prs: int = Field(default=0, alias='totalPRs')
    merged_prs: Optional[int] = Field(default=None, alias='mergedPRs')
    total_issues: int = Field(default=0, alias='totalIssues')
    open_issues: Optional[int] = Field(default=None, alias='openIssues')
    closed_issues: Optional[int] = Field(default=None, alias='closedIssues')
    issues_closed_ratio: Optional[float] = Field(default=None, alias='issuesClosedRatio')
    total_stars: int = Field(default=0, alias='totalStars')
    total_forks: int = Field(default=0, alias='totalForks')
    languages: List[str] = Field(default_factory=list)
    language_count: Optional[int] = Field(default=None, alias='languageCount')
    top_language_dominance_pct: Optional[float] = Field(default=None, alias='topLanguageDominancePct')
    streak: int = 0
    total_contributions: Optional[int] = Field(default=None, alias='totalContributions')
    active_weeks_pct: Optional[float] = Field(default=None, alias='activeWeeksPct')
    avg_commits_per_active_week: Optional[float] = Field(default=None, alias='avgCommitsPerActiveWeek')
    std_dev_per_week: Optional[float] = Field(default=None, alias='stdDevPerWeek')
    longest_inactive_gap: Optional[int] = Field(default=None, alias='longestInactiveGap')
    commit_velocity_trend: Optional[float] = Field(default=None, alias='commitVelocityTrend')
    activity_momentum_ratio: Optional[float] = Field(default=None, alias='activityMomentumRatio')


class UserProfile(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    age: Optional[int] = None
    education: Optional[str] = None
    experience_years: Optional[str] = Field(default=None, alias='experienceYears')
    current_role: Optional[str] = Field(default=None, alias='currentRole')
    career_goal: Optional[str] = Field(default=None, alias='careerGoal')
    technical_skills: Optional[str] = Field(default=None, alias='technicalSkills')
    technical_interests: Optional[str] = Field(default=None, alias='technicalInterests')
    hobbies: Optional[str] = None


class AnalysisRequest(_CamelModel):
    github_stats: Optional[GitHubStats] = Field(default=None, alias='githubStats')
    user_profile: Optional[UserProfile] = Field(default=None, alias='userProfile')
    tone: Optional[str] = None
    nickname: Optional[str] = Field(default=None, max_length=NICKNAME_MAX_LENGTH)
    mode: Optional[str] = None

    @field_validator('tone', mode='before')
    @classmethod
    def validate_tone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        label = value.strip().lower()
        if label not in {'mild', 'balanced', 'brutal'}:
            raise ValueError(f"Unsupported tone '{value}'")
        return label

    @field_validator('mode', mode='before')
    @classmethod
    def validate_mode(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        label = value.strip().lower().replace('-', '_')
        if label not in {'single_phase', 'two_phase'}:
            raise ValueError(f"Unsupported analysis mode '{value}'")
        return label


class ProjectsRequest(_CamelModel):
    github_stats: Optional[GitHubStats] = Field(default=None, alias='githubStats')
    user_profile: Optional[UserProfile] = Field(default=None, alias='userProfile')


class AnalysisResponse(_CamelModel):
    analysis: AnalysisResult
    model: Optional[str] = None
    using_fallback: bool = Field(default=False, alias='usingFallback')


class ProjectsResponse(_CamelModel):
    projects: List[Project]
    model: Optional[str] = None
    using_fallback: bool = Field(default=False, alias='usingFallback')
