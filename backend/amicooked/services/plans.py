"""Plan registry: static limits, models and pricing per tier."""

from __future__ import annotations

import json
import logging
from typing import Any

from ..models.usage import PlanConfig, UsageType

logger = logging.getLogger(__name__)

DEFAULT_PLAN_ID = 'free'

_DEFAULT_PLAN_CATALOG: dict[str, dict[str, Any]] = {
    'free': {
        'display_name': 'Free',
        'description': 'Basic features with monthly limits.',
        'price': '$0/mo',
        'limits': {
            UsageType.MESSAGE.value: 5,
            UsageType.REANALYZE.value: 3,
            UsageType.PROJECT_CHAT.value: 3,
        },
        'models': {'primary': 'meta-llama/llama-4-scout', 'fallback': None},
        'has_fallback': False,
        'memory_limit': 0,
        'detailed_stats': False,
    },
    'student': {
        'display_name': 'Student',
        'description': 'For students building their first real portfolio.',
        'price': '$4.99/mo',
        'limits': {
            UsageType.MESSAGE.value: 50,
            UsageType.REANALYZE.value: 15,
            UsageType.PROJECT_CHAT.value: 15,
        },
        'models': {'primary': 'meta-llama/llama-4-scout', 'fallback': 'openrouter/free'},
        'has_fallback': True,
        'memory_limit': 75,
    },
    'pro': {
        'display_name': 'Pro',
        'description': 'For developers serious about landing their next role.',
        'price': '$12.99/mo',
        'limits': {
            UsageType.MESSAGE.value: 200,
            UsageType.REANALYZE.value: 50,
            UsageType.PROJECT_CHAT.value: None,
        },
        'models': {'primary': 'meta-llama/llama-4-maverick', 'fallback': None},
        'has_fallback': False,
        'memory_limit': 200,
    },
    'ultimate': {
        'display_name': 'Ultimate',
        'description': 'Unlimited power for developers who refuse to stay cooked.',
        'price': '$29.99/mo',
        'limits': {
            UsageType.MESSAGE.value: None,
            UsageType.REANALYZE.value: None,
            UsageType.PROJECT_CHAT.value: None,
        },
        'models': {'primary': 'google/gemini-3.1-pro-preview', 'fallback': None},
        'has_fallback': False,
        'memory_limit': 500,
    },
}


class PlanRegistry:
    """Read-only lookup over the plan catalog. Unknown ids resolve to ``free``."""

    def __init__(self, catalog_json: str | None = None) -> None:
        self._plans = self._load_plan_catalog(catalog_json)
        if DEFAULT_PLAN_ID not in self._plans:
            raise ValueError(f"plan catalog must define a '{DEFAULT_PLAN_ID}' plan")

    @staticmethod
    def _load_plan_catalog(catalog_json: str | None) -> dict[str, PlanConfig]:
        if catalog_json:
            try:
                payload = json.loads(catalog_json)
            except json.JSONDecodeError as exc:
                raise ValueError('PLAN_CATALOG_JSON must be valid JSON') from exc
            logger.info('Loaded plan catalog override with %s plans', len(payload))
        else:
            payload = _DEFAULT_PLAN_CATALOG
        catalog: dict[str, PlanConfig] = {}
        for plan_id, data in payload.items():
            catalog[plan_id] = PlanConfig(
                id=plan_id,
                display_name=data.get('display_name', plan_id.title()),
                description=data.get('description', ''),
                price=data.get('price', ''),
                limits=data.get('limits', {}),
                models=data['models'],
                has_fallback=data.get('has_fallback', False),
                memory_limit=data.get('memory_limit', 0),
                detailed_stats=data.get('detailed_stats', True),
            )
        return catalog

    def get_plan(self, plan_id: str | None) -> PlanConfig:
        if plan_id and plan_id in self._plans:
            return self._plans[plan_id]
        return self._plans[DEFAULT_PLAN_ID]

    def get_limit(self, plan_id: str | None, usage_type: UsageType | str) -> int | None:
        return self.get_plan(plan_id).limit_for(usage_type)

    def has_plan(self, plan_id: str) -> bool:
        return plan_id in self._plans

    def catalog(self) -> list[PlanConfig]:
        return list(self._plans.values())


def format_limit(limit: int | None) -> str:
    return 'Unlimited' if limit is None else str(limit)
