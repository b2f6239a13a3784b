from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..services.plans import format_limit
from ..services.usage import LimitExceededError

logger = logging.getLogger(__name__)

AI_FAILURE_MESSAGE = 'The AI service could not complete this request. Please try again in a moment.'


def limit_exceeded(exc: LimitExceededError) -> HTTPException:
    result = exc.result
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            'message': str(exc),
            'usageType': exc.usage_type,
            'current': result.current,
            'limit': format_limit(result.limit),
            'plan': result.plan,
            'upgrade': 'Upgrade your plan on the pricing page for higher limits.',
        },
    )


def store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Usage data is temporarily unavailable. Please try again shortly.',
    )


def ai_failure(exc: Exception) -> HTTPException:
    logger.warning('AI request failed: %s', exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=AI_FAILURE_MESSAGE)
