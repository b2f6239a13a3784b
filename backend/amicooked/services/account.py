from __future__ import annotations

import logging

from ..models.agent import AccountProfile, Preferences, ProfileUpdate
from ..models.analysis import UserProfile
from ..storage.documents import DocumentStore
from ..storage.usage_store import UsageStore
from .agent import SessionManager
from .plans import PlanRegistry

logger = logging.getLogger(__name__)


class AccountService:
    """Profile, preferences and account lifecycle for ``users/{uid}``."""

    def __init__(
        self,
        documents: DocumentStore,
        usage_store: UsageStore,
        sessions: SessionManager,
        plans: PlanRegistry,
    ) -> None:
        self._documents = documents
        self._usage_store = usage_store
        self._sessions = sessions
        self._plans = plans

    async def get_profile(self, user_id: str) -> AccountProfile:
        data = await self._documents.get(f'users/{user_id}') or {}
        profile = data.get('profile')
        return AccountProfile(
            user_id=user_id,
            plan=self._plans.get_plan(data.get('plan')).id,
            profile=UserProfile.model_validate(profile) if profile else None,
            preferences=Preferences.model_validate(data.get('preferences') or {}),
        )

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> AccountProfile:
        changes = {}
        if update.profile is not None:
            changes['profile'] = update.profile.model_dump(mode='json', by_alias=True, exclude_none=True)
        if update.preferences is not None:
            changes['preferences'] = update.preferences.model_dump(mode='json', by_alias=True)
        if changes:
            await self._documents.set(f'users/{user_id}', changes, merge=True)
        return await self.get_profile(user_id)

    async def reset_all_data(self, user_id: str) -> None:
        """Wipe chats, projects, results, agent memory, usage and profile. The plan survives."""
        data = await self._documents.get(f'users/{user_id}') or {}
        removed = await self._documents.delete_tree(f'users/{user_id}')
        if data.get('plan'):
            await self._documents.set(f'users/{user_id}', {'plan': data['plan']})
        await self._usage_store.delete_user(user_id)
        self._sessions.discard(user_id)
        logger.info('Reset %s documents for %s (plan kept: %s)', removed, user_id, data.get('plan'))

    async def delete_account(self, user_id: str) -> None:
        removed = await self._documents.delete_tree(f'users/{user_id}')
        await self._usage_store.delete_user(user_id)
        self._sessions.discard(user_id)
        logger.info('Deleted account data for %s (%s documents)', user_id, removed)
