"""Usage accounting and plan enforcement."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from ..config import Settings
from ..models.usage import LimitCheckResult, PlanConfig, PlanQuota, UsageSummary, UsageType
from ..storage.documents import DocumentStore, StoreUnavailableError
from ..storage.usage_store import UsageStore
from .plans import DEFAULT_PLAN_ID, PlanRegistry, format_limit

logger = logging.getLogger(__name__)

T = TypeVar('T')

_USAGE_LABELS = {
    UsageType.MESSAGE.value: 'AI messages',
    UsageType.REANALYZE.value: 'profile re-analyses',
    UsageType.PROJECT_CHAT.value: 'project chats',
}


class LimitExceededError(Exception):
    """Raised when a user has no quota left and the plan has no fallback model."""

    def __init__(self, usage_type: str, result: LimitCheckResult) -> None:
        self.usage_type = usage_type
        self.result = result
        label = _USAGE_LABELS.get(usage_type, usage_type)
        super().__init__(
            f"You've used all {format_limit(result.limit)} {label} for this period "
            f"({result.current}/{format_limit(result.limit)}). Upgrade your plan to continue."
        )


def usage_key(usage_type: UsageType | str) -> str:
    if isinstance(usage_type, UsageType):
        return usage_type.value
    return UsageType(usage_type).value


def resolve_limit(plan: PlanConfig, usage_type: str, current: int) -> LimitCheckResult:
    """Decide allow/deny/fallback for one usage type given the current count."""
    limit = plan.limit_for(usage_type)
    if limit is None or current < limit:
        return LimitCheckResult(
            allowed=True,
            current=current,
            limit=limit,
            using_fallback=False,
            model=plan.models.primary,
            plan=plan.id,
            reason='ok',
        )
    if plan.has_fallback and plan.models.fallback:
        return LimitCheckResult(
            allowed=True,
            current=current,
            limit=limit,
            using_fallback=True,
            model=plan.models.fallback,
            plan=plan.id,
            reason='fallback',
        )
    return LimitCheckResult(
        allowed=False,
        current=current,
        limit=limit,
        using_fallback=False,
        model=None,
        plan=plan.id,
        reason='limit',
    )


class UsageService:
    """Checks limits before guarded actions and counts them afterwards.

    Incrementing is left to the caller (or :meth:`guarded`) so that a failed
    AI call is never charged.
    """

    def __init__(
        self,
        plans: PlanRegistry,
        store: UsageStore,
        documents: DocumentStore,
        settings: Settings,
    ) -> None:
        self._plans = plans
        self._store = store
        self._documents = documents
        self._retry_backoff = max(0.0, settings.store_retry_backoff_seconds)

    @property
    def plans(self) -> PlanRegistry:
        return self._plans

    @property
    def store(self) -> UsageStore:
        return self._store

    async def _with_retry(self, func: Callable[..., Awaitable[T]], *args) -> T:
        try:
            return await func(*args)
        except StoreUnavailableError:
            logger.warning('Store call %s failed; retrying once', getattr(func, '__name__', func))
            await asyncio.sleep(self._retry_backoff)
            return await func(*args)

    async def _read_plan_id(self, user_id: str) -> str:
        data = await self._documents.get(f'users/{user_id}')
        plan_id = (data or {}).get('plan') or DEFAULT_PLAN_ID
        return self._plans.get_plan(plan_id).id

    async def get_plan_for_user(self, user_id: str) -> PlanConfig:
        plan_id = await self._with_retry(self._read_plan_id, user_id)
        return self._plans.get_plan(plan_id)

    async def check_limit(self, user_id: str, usage_type: UsageType | str) -> LimitCheckResult:
        key = usage_key(usage_type)
        try:
            plan = await self.get_plan_for_user(user_id)
            record = await self._with_retry(self._store.get_usage, user_id, key)
        except StoreUnavailableError:
            logger.warning('Usage store unavailable while checking %s for %s; denying', key, user_id)
            return LimitCheckResult(allowed=False, plan=DEFAULT_PLAN_ID, reason='unavailable')

        result = resolve_limit(plan, key, record.current)
        if result.reason != 'ok':
            logger.info(
                'Limit check for %s/%s on %s: %s (%s/%s)',
                user_id,
                key,
                plan.id,
                result.reason,
                result.current,
                format_limit(result.limit),
            )
        return result

    async def increment_usage(self, user_id: str, usage_type: UsageType | str) -> None:
        key = usage_key(usage_type)
        try:
            await self._with_retry(self._store.increment, user_id, key)
        except StoreUnavailableError:
            logger.exception('Failed to record %s usage for %s', key, user_id)
            raise

    async def guarded(
        self,
        user_id: str,
        usage_type: UsageType | str,
        action: Callable[[LimitCheckResult], Awaitable[T]],
    ) -> T:
        """Run ``action`` only if allowed, and count it only if it succeeds."""
        key = usage_key(usage_type)
        check = await self.check_limit(user_id, key)
        if check.reason == 'unavailable':
            raise StoreUnavailableError('usage store unavailable')
        if not check.allowed:
            raise LimitExceededError(key, check)
        result = await action(check)
        # The request may be abandoned after this point; the count still lands.
        try:
            await asyncio.shield(self.increment_usage(user_id, key))
        except StoreUnavailableError:
            # The action's writes already landed; an uncounted use is logged, not surfaced.
            logger.warning('Returning %s result for %s without recording usage', key, user_id)
        return result

    async def get_usage_summary(self, user_id: str) -> UsageSummary:
        plan = await self.get_plan_for_user(user_id)
        usage: dict[str, int] = {}
        quotas: list[PlanQuota] = []
        for usage_type in UsageType:
            record = await self._with_retry(self._store.get_usage, user_id, usage_type.value)
            usage[usage_type.value] = record.current
            limit = plan.limit_for(usage_type)
            remaining = None if limit is None else max(limit - record.current, 0)
            status = 'ok'
            if limit is not None:
                if remaining <= 0:
                    status = 'limit'
                elif remaining / limit <= 0.1:
                    status = 'warning'
            quotas.append(
                PlanQuota(
                    usage_type=usage_type.value,
                    limit=limit,
                    used=record.current,
                    remaining=remaining,
                    window_start=record.window_start,
                    period_days=self._store.period_days,
                    status=status,
                )
            )
        return UsageSummary(plan=plan.id, plan_config=plan, usage=usage, quotas=quotas)

    async def get_plan_catalog(self) -> list[PlanConfig]:
        return self._plans.catalog()

    async def set_plan(self, user_id: str, plan_id: str) -> PlanConfig:
        """Server-side plan change. Billing is out of scope; nothing else writes ``plan``."""
        if not user_id:
            raise ValueError('user_id is required to change plans')
        if not self._plans.has_plan(plan_id):
            raise ValueError(f'Unknown plan {plan_id}')
        await self._documents.set(f'users/{user_id}', {'plan': plan_id}, merge=True)
        logger.info('Plan for %s set to %s', user_id, plan_id)
        return self._plans.get_plan(plan_id)


def build_usage_service(settings: Settings, documents: DocumentStore | None = None) -> UsageService:
    return UsageService(
        plans=PlanRegistry(settings.plan_catalog_json),
        store=UsageStore(settings.store_db_path, period_days=settings.period_days),
        documents=documents or DocumentStore(settings.store_db_path),
        settings=settings,
    )
