from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..clients.openrouter import AICallError, OpenRouterClient
from ..config import Settings
from ..models.analysis import AnalysisResult, CategoryScore, GitHubStats, Project, UserProfile
from ..storage.documents import DocumentStore
from . import prompts
from .scoring import (
    MalformedAIResponseError,
    derive_cooked_level,
    extract_json,
    level_name,
    parse_category_scores,
    parse_narrative,
    parse_projects,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

ANALYSIS_MODES = ('single_phase', 'two_phase')


class AnalysisFailedError(Exception):
    """Raised when every attempt at an AI step failed validation or the call itself."""

    def __init__(self, step: str, attempts: int) -> None:
        super().__init__(f'{step} failed after {attempts} attempts')
        self.step = step
        self.attempts = attempts


def _parse_scores(reply: str) -> Dict[str, CategoryScore]:
    return parse_category_scores(extract_json(reply))


def _parse_synthesis(reply: str) -> Dict[str, Any]:
    payload = extract_json(reply)
    if 'categoryScores' in payload:
        logger.debug('Discarding categoryScores emitted during synthesis')
    return parse_narrative(payload)


def _parse_single_phase(reply: str) -> tuple[Dict[str, CategoryScore], Dict[str, Any]]:
    payload = extract_json(reply)
    return parse_category_scores(payload), parse_narrative(payload)


def _parse_projects(reply: str) -> List[Project]:
    return parse_projects(extract_json(reply, kind='array'))


class AnalysisService:
    """Runs the cooked-level analysis and project recommendations against the AI API."""

    def __init__(self, client: OpenRouterClient, documents: DocumentStore, settings: Settings) -> None:
        self._client = client
        self._documents = documents
        self._max_attempts = max(1, settings.ai_max_attempts)
        self._backoff = max(0.0, settings.ai_retry_backoff_seconds)
        self._default_mode = settings.analysis_mode if settings.analysis_mode in ANALYSIS_MODES else 'two_phase'

    async def _call_validated(
        self,
        step: str,
        prompt: str,
        system_prompt: str,
        model: Optional[str],
        parse: Callable[[str], T],
    ) -> T:
        for attempt in range(1, self._max_attempts + 1):
            try:
                reply = await self._client.complete(prompt, system_prompt, model=model)
                return parse(reply)
            except (MalformedAIResponseError, AICallError) as exc:
                logger.warning('%s attempt %s/%s failed: %s', step, attempt, self._max_attempts, exc)
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))
        logger.error('%s failed after %s attempts', step, self._max_attempts)
        raise AnalysisFailedError(step, self._max_attempts)

    async def analyze_cooked_level(
        self,
        github_stats: GitHubStats,
        user_profile: Optional[UserProfile],
        previous_analysis: Optional[AnalysisResult] = None,
        model: Optional[str] = None,
        tone: Optional[str] = None,
        nickname: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> AnalysisResult:
        mode = mode or self._default_mode
        if mode not in ANALYSIS_MODES:
            raise ValueError(f'Unsupported analysis mode {mode}')
        comparison = 'PROGRESS_COMPARISON' if previous_analysis else 'INITIAL_ASSESSMENT'

        if mode == 'two_phase':
            scores = await self._call_validated(
                'scoring',
                prompts.scoring_prompt(github_stats, user_profile),
                prompts.SCORING_INSTRUCTIONS,
                model,
                _parse_scores,
            )
            synthesis_system = prompts.personalise(
                prompts.CHAT_INSTRUCTIONS
                + prompts.mode_instructions('SYNTHESIS')
                + (prompts.mode_instructions(comparison) if previous_analysis else ''),
                tone,
                nickname,
            )
            narrative = await self._call_validated(
                'synthesis',
                prompts.synthesis_prompt(github_stats, user_profile, scores, previous_analysis),
                synthesis_system,
                model,
                _parse_synthesis,
            )
        else:
            system_prompt = prompts.personalise(
                prompts.ANALYSIS_INSTRUCTIONS + prompts.mode_instructions(comparison), tone, nickname
            )
            scores, narrative = await self._call_validated(
                'analysis',
                prompts.single_phase_prompt(github_stats, user_profile, previous_analysis),
                system_prompt,
                model,
                _parse_single_phase,
            )

        level = derive_cooked_level(scores)
        return AnalysisResult(
            cooked_level=level,
            level_name=level_name(level),
            category_scores=scores,
            model=model or self._client.default_model,
            mode=mode,
            analyzed_at=datetime.now(timezone.utc),
            **narrative,
        )

    async def get_recommended_projects(
        self,
        github_stats: GitHubStats,
        user_profile: Optional[UserProfile],
        previous_analysis: Optional[AnalysisResult] = None,
        model: Optional[str] = None,
    ) -> List[Project]:
        system_prompt = prompts.CHAT_INSTRUCTIONS + prompts.mode_instructions('PROJECT_RECOMMENDATION')
        return await self._call_validated(
            'project recommendations',
            prompts.projects_prompt(github_stats, user_profile, previous_analysis),
            system_prompt,
            model,
            _parse_projects,
        )

    async def save_result(self, user_id: str, result: AnalysisResult) -> None:
        """Write the result as ``latest`` (replacing the previous one) and as a dated history entry."""
        analyzed_at = result.analyzed_at or datetime.now(timezone.utc)
        payload = result.model_dump(mode='json', by_alias=True)
        stamp = analyzed_at.strftime('%Y%m%dT%H%M%S%fZ')
        await self._documents.set(f'users/{user_id}/results/{stamp}', payload)
        await self._documents.set(f'users/{user_id}/results/latest', payload)

    async def save_projects(self, user_id: str, projects: List[Project]) -> None:
        await self._documents.set(
            f'users/{user_id}/results/latest',
            {'projects': [project.model_dump(mode='json', by_alias=True) for project in projects]},
            merge=True,
        )

    async def get_latest_result(self, user_id: str) -> Optional[AnalysisResult]:
        data = await self._documents.get(f'users/{user_id}/results/latest')
        if not data or 'categoryScores' not in data:
            return None
        return AnalysisResult.model_validate(data)

    async def get_latest_projects(self, user_id: str) -> List[Project]:
        data = await self._documents.get(f'users/{user_id}/results/latest') or {}
        return [Project.model_validate(item) for item in data.get('projects') or []]
