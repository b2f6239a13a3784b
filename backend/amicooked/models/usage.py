from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UsageType(str, Enum):
    """Rate-limited action categories, stored under these keys."""

    MESSAGE = 'messages'
    REANALYZE = 'reanalyzes'
    PROJECT_CHAT = 'projectChats'


class PlanModels(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    fallback: Optional[str] = None


class PlanConfig(BaseModel):
    """Static limits, models and pricing for one plan tier."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str = ''
    price: str = ''
    limits: Dict[str, Optional[int]]
    models: PlanModels
    has_fallback: bool = False
    memory_limit: int = Field(default=0, ge=0)
    detailed_stats: bool = True

    @model_validator(mode='after')
    def check_limits(self) -> 'PlanConfig':
        missing = [usage_type.value for usage_type in UsageType if usage_type.value not in self.limits]
        if missing:
            raise ValueError(f"plan '{self.id}' is missing limits for: {', '.join(missing)}")
        for key, limit in self.limits.items():
            if limit is not None and limit < 0:
                raise ValueError(f"plan '{self.id}' has a negative limit for {key}")
        if self.has_fallback and not self.models.fallback:
            raise ValueError(f"plan '{self.id}' enables fallback without a fallback model")
        return self

    def limit_for(self, usage_type: UsageType | str) -> int | None:
        key = usage_type.value if isinstance(usage_type, UsageType) else usage_type
        return self.limits.get(key)


class UsageRecord(BaseModel):
    user_id: str
    usage_type: str
    current: int = Field(ge=0)
    window_start: datetime


class LimitCheckResult(BaseModel):
    """Outcome of a single limit check. Not persisted."""

    allowed: bool
    current: int = 0
    limit: Optional[int] = None
    using_fallback: bool = False
    model: Optional[str] = None
    plan: str = 'free'
    reason: str = Field(default='ok', description='ok | fallback | limit | unavailable')


class PlanQuota(BaseModel):
    usage_type: str
    limit: int | None = Field(default=None, ge=0)
    used: int = Field(default=0, ge=0)
    remaining: int | None = Field(default=None)
    window_start: datetime | None = None
    period_days: int = Field(default=30, ge=1)
    status: str = Field(default='ok', description='ok | warning | limit')


class UsageSummary(BaseModel):
    plan: str
    plan_config: PlanConfig
    usage: Dict[str, int]
    quotas: list[PlanQuota] = Field(default_factory=list)
