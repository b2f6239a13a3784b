from __future__ import annotations

from fastapi import APIRouter, Depends

from ...dependencies import UserContext, get_usage_service, get_user_context
from ...models.usage import LimitCheckResult, PlanConfig, UsageSummary, UsageType
from ...services.usage import UsageService
from ...storage.documents import StoreUnavailableError
from ..errors import store_unavailable

router = APIRouter(prefix='/usage', tags=['usage'])


@router.get('/summary', response_model=UsageSummary)
async def usage_summary(
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
) -> UsageSummary:
    try:
        return await usage_service.get_usage_summary(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.get('/check/{usage_type}', response_model=LimitCheckResult)
async def check_limit(
    usage_type: UsageType,
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
) -> LimitCheckResult:
    return await usage_service.check_limit(user.user_id, usage_type)


@router.get('/catalog', response_model=list[PlanConfig])
async def plan_catalog(usage_service: UsageService = Depends(get_usage_service)) -> list[PlanConfig]:
    return await usage_service.get_plan_catalog()
