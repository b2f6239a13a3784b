from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...clients.github import GitHubAPIError
from ...clients.openrouter import AICallError
from ...dependencies import (
    UserContext,
    get_account_service,
    get_analysis_service,
    get_github_stats_service,
    get_session_manager,
    get_usage_service,
    get_user_context,
)
from ...models.analysis import (
    AnalysisRequest,
    AnalysisResponse,
    AnalysisResult,
    GitHubStats,
    Project,
    ProjectsRequest,
    ProjectsResponse,
)
from ...models.usage import LimitCheckResult, UsageType
from ...services.account import AccountService
from ...services.agent import SessionManager
from ...services.analysis import AnalysisFailedError, AnalysisService
from ...services.github_stats import GitHubStatsService
from ...services.usage import LimitExceededError, UsageService
from ...storage.documents import StoreUnavailableError
from ..errors import ai_failure, limit_exceeded, store_unavailable

router = APIRouter(prefix='/analysis', tags=['analysis'])


async def _resolve_stats(
    provided: Optional[GitHubStats],
    user: UserContext,
    github_service: GitHubStatsService,
) -> GitHubStats:
    if provided is not None:
        return provided
    if not user.github_token:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail='Provide githubStats in the body or an X-GitHub-Token header',
        )
    try:
        return await github_service.get_stats(user.github_token)
    except GitHubAPIError as exc:
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='GitHub token was rejected') from exc
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail='Could not load GitHub data. Please try again.'
        ) from exc


@router.post('', response_model=AnalysisResponse)
async def analyze_profile(
    payload: Optional[AnalysisRequest] = Body(default=None),
    user: UserContext = Depends(get_user_context),
    analysis_service: AnalysisService = Depends(get_analysis_service),
    usage_service: UsageService = Depends(get_usage_service),
    github_service: GitHubStatsService = Depends(get_github_stats_service),
    account_service: AccountService = Depends(get_account_service),
    sessions: SessionManager = Depends(get_session_manager),
) -> AnalysisResponse:
    payload = payload or AnalysisRequest()
    stats = await _resolve_stats(payload.github_stats, user, github_service)
    try:
        account = await account_service.get_profile(user.user_id)
        previous = await analysis_service.get_latest_result(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    profile = payload.user_profile or account.profile
    tone = payload.tone or account.preferences.roast_intensity
    nickname = payload.nickname or account.preferences.dev_nickname

    async def _run(check: LimitCheckResult) -> tuple[AnalysisResult, LimitCheckResult]:
        result = await analysis_service.analyze_cooked_level(
            stats,
            profile,
            previous_analysis=previous,
            model=check.model,
            tone=tone,
            nickname=nickname,
            mode=payload.mode,
        )
        await analysis_service.save_result(user.user_id, result)
        return result, check

    try:
        result, check = await usage_service.guarded(user.user_id, UsageType.REANALYZE, _run)
    except LimitExceededError as exc:
        raise limit_exceeded(exc) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    except (AnalysisFailedError, AICallError) as exc:
        raise ai_failure(exc) from exc

    session = sessions.get(user.user_id)
    if session is not None:
        session.set_context(stats, profile, result)
    return AnalysisResponse(analysis=result, model=check.model, using_fallback=check.using_fallback)


@router.get('/latest', response_model=AnalysisResult)
async def latest_analysis(
    user: UserContext = Depends(get_user_context),
    analysis_service: AnalysisService = Depends(get_analysis_service),
) -> AnalysisResult:
    try:
        result = await analysis_service.get_latest_result(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='No analysis yet')
    return result


@router.post('/projects', response_model=ProjectsResponse)
async def recommend_projects(
    payload: Optional[ProjectsRequest] = Body(default=None),
    user: UserContext = Depends(get_user_context),
    analysis_service: AnalysisService = Depends(get_analysis_service),
    usage_service: UsageService = Depends(get_usage_service),
    github_service: GitHubStatsService = Depends(get_github_stats_service),
    account_service: AccountService = Depends(get_account_service),
) -> ProjectsResponse:
    """Recommendations ride on the analysis quota: the model is resolved from it but nothing is charged."""
    payload = payload or ProjectsRequest()
    stats = await _resolve_stats(payload.github_stats, user, github_service)
    check = await usage_service.check_limit(user.user_id, UsageType.REANALYZE)
    if check.reason == 'unavailable':
        raise store_unavailable()
    if not check.allowed:
        raise limit_exceeded(LimitExceededError(UsageType.REANALYZE.value, check))

    try:
        profile = payload.user_profile or (await account_service.get_profile(user.user_id)).profile
        previous = await analysis_service.get_latest_result(user.user_id)
        projects = await analysis_service.get_recommended_projects(
            stats, profile, previous_analysis=previous, model=check.model
        )
        await analysis_service.save_projects(user.user_id, projects)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    except (AnalysisFailedError, AICallError) as exc:
        raise ai_failure(exc) from exc
    return ProjectsResponse(projects=projects, model=check.model, using_fallback=check.using_fallback)


@router.get('/projects/latest', response_model=list[Project])
async def latest_projects(
    user: UserContext = Depends(get_user_context),
    analysis_service: AnalysisService = Depends(get_analysis_service),
) -> list[Project]:
    try:
        return await analysis_service.get_latest_projects(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
