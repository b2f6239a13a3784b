from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import List

from ..clients.openrouter import OpenRouterClient
from ..models.agent import ChatReply, ChatTurn, MemoryItem, MemoryType, SavedProject
from ..models.analysis import Project
from ..models.usage import LimitCheckResult, UsageType
from ..storage.documents import DocumentStore
from . import prompts
from .agent import SessionManager
from .chat import load_preferences
from .usage import UsageService

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 60


class ProjectNotFoundError(LookupError):
    pass


def slugify(name: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', (name or 'project').lower()).strip('-')
    return (slug or 'project')[:SLUG_MAX_LENGTH]


class ProjectService:
    """Bookmarked projects at ``users/{uid}/savedProjects/{slug}`` and their chats."""

    def __init__(
        self,
        documents: DocumentStore,
        usage: UsageService,
        sessions: SessionManager,
        client: OpenRouterClient,
    ) -> None:
        self._documents = documents
        self._usage = usage
        self._sessions = sessions
        self._client = client

    @staticmethod
    def _path(user_id: str, project_id: str) -> str:
        return f'users/{user_id}/savedProjects/{project_id}'

    async def save_project(self, user_id: str, project: Project) -> SavedProject:
        project_id = slugify(project.name)
        now = datetime.now(timezone.utc).isoformat()
        payload = {
            **project.model_dump(mode='json', by_alias=True),
            'messages': [],
            'savedAt': now,
            'updatedAt': now,
        }
        await self._documents.set(self._path(user_id, project_id), payload)

        plan = await self._usage.get_plan_for_user(user_id)
        description = project.description or project.overview
        content = f'Bookmarked project: "{project.name}"' + (f' ({description})' if description else '')
        await self._sessions.add_memory(
            user_id,
            plan,
            MemoryItem(
                type=MemoryType.OTHER,
                content=content,
                meta={'source': 'project-bookmark', 'projectName': project.name},
            ),
        )
        logger.debug('Saved project %s for %s', project_id, user_id)
        return SavedProject.model_validate({**payload, 'id': project_id})

    async def unsave_project(self, user_id: str, project_id: str) -> None:
        await self.get_saved_project(user_id, project_id)
        await self._documents.delete(self._path(user_id, project_id))

    async def list_saved_projects(self, user_id: str) -> List[SavedProject]:
        documents = await self._documents.list(f'users/{user_id}/savedProjects')
        return [SavedProject.model_validate({**data, 'id': project_id}) for project_id, data in documents]

    async def get_saved_project(self, user_id: str, project_id: str) -> SavedProject:
        data = await self._documents.get(self._path(user_id, project_id))
        if data is None:
            raise ProjectNotFoundError(f'Saved project {project_id} not found')
        return SavedProject.model_validate({**data, 'id': project_id})

    async def send_project_message(self, user_id: str, project_id: str, message: str) -> ChatReply:
        """Answer a question about one saved project, charging one ``projectChats`` use on success."""
        project = await self.get_saved_project(user_id, project_id)
        plan = await self._usage.get_plan_for_user(user_id)
        session = await self._sessions.get_or_start(user_id, plan)
        preferences = await load_preferences(self._documents, user_id)

        system_prompt = prompts.project_system_prompt(
            project,
            session.github_stats,
            session.user_profile,
            session.analysis,
            detailed=plan.detailed_stats,
        )
        if plan.id == 'free':
            system_prompt += prompts.FREE_PLAN_RESTRICTION
        system_prompt = prompts.personalise(system_prompt, preferences.roast_intensity, preferences.dev_nickname)
        prompt = prompts.format_conversation_context(project.messages, message)

        async def _reply(check: LimitCheckResult) -> tuple[str, LimitCheckResult]:
            reply = await self._client.complete(prompt, system_prompt, model=check.model)
            turns = [
                ChatTurn(role='user', content=message).model_dump(mode='json'),
                ChatTurn(role='assistant', content=reply).model_dump(mode='json'),
            ]
            history = [turn.model_dump(mode='json') for turn in project.messages]
            await self._documents.set(
                self._path(user_id, project_id),
                {'messages': history + turns, 'updatedAt': datetime.now(timezone.utc).isoformat()},
                merge=True,
            )
            return reply, check

        reply, check = await self._usage.guarded(user_id, UsageType.PROJECT_CHAT, _reply)
        return ChatReply(chat_id=project_id, reply=reply, model=check.model, using_fallback=check.using_fallback)
