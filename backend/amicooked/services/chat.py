from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..clients.openrouter import OpenRouterClient
from ..models.agent import Chat, ChatReply, ChatTurn, Preferences
from ..models.analysis import AnalysisResult, GitHubStats, UserProfile
from ..models.usage import LimitCheckResult, UsageType
from ..storage.documents import DocumentStore
from . import prompts
from .agent import AgentSession, SessionManager
from .usage import UsageService

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50


class ChatNotFoundError(LookupError):
    pass


def chat_title(first_message: str) -> str:
    message = first_message.strip()
    if len(message) > TITLE_MAX_LENGTH:
        return message[:TITLE_MAX_LENGTH] + '...'
    return message


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def load_preferences(documents: DocumentStore, user_id: str) -> Preferences:
    data = await documents.get(f'users/{user_id}') or {}
    return Preferences.model_validate(data.get('preferences') or {})


class ChatService:
    """Agent chat: one document per conversation at ``users/{uid}/chats/{chatId}``."""

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
    def _path(user_id: str, chat_id: str) -> str:
        return f'users/{user_id}/chats/{chat_id}'

    async def list_chats(self, user_id: str) -> List[Chat]:
        documents = await self._documents.list(f'users/{user_id}/chats')
        return [Chat.model_validate({**data, 'id': chat_id}) for chat_id, data in documents]

    async def get_chat(self, user_id: str, chat_id: str) -> Chat:
        data = await self._documents.get(self._path(user_id, chat_id))
        if data is None:
            raise ChatNotFoundError(f'Chat {chat_id} not found')
        return Chat.model_validate({**data, 'id': chat_id})

    @staticmethod
    def _restore_context(session: AgentSession, chat: Chat) -> None:
        if session.github_stats is not None or not chat.context:
            return
        context = chat.context
        session.set_context(
            GitHubStats.model_validate(context['githubStats']) if context.get('githubStats') else None,
            UserProfile.model_validate(context['userProfile']) if context.get('userProfile') else None,
            AnalysisResult.model_validate(context['analysis']) if context.get('analysis') else None,
        )

    @staticmethod
    def _context_snapshot(session: AgentSession) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {}
        if session.github_stats is not None:
            snapshot['githubStats'] = session.github_stats.model_dump(mode='json', by_alias=True)
        if session.user_profile is not None:
            snapshot['userProfile'] = session.user_profile.model_dump(mode='json', by_alias=True)
        if session.analysis is not None:
            snapshot['analysis'] = session.analysis.model_dump(mode='json', by_alias=True)
        return snapshot

    async def resume_chat(self, user_id: str, session: AgentSession, chat_id: Optional[str]) -> Optional[Chat]:
        """Point ``session`` at ``chat_id``, restoring its saved context and recent turns."""
        chat: Optional[Chat] = None
        if chat_id:
            chat = await self.get_chat(user_id, chat_id)
            self._restore_context(session, chat)
        if chat_id != session.chat_id:
            session.switch_chat(chat_id, chat.messages if chat else [])
        return chat

    async def send_message(self, user_id: str, message: str, chat_id: Optional[str] = None) -> ChatReply:
        """Answer ``message`` in ``chat_id`` (or a new chat), charging one ``messages`` use on success."""
        plan = await self._usage.get_plan_for_user(user_id)
        session = await self._sessions.get_or_start(user_id, plan)

        chat = await self.resume_chat(user_id, session, chat_id)
        preferences = await load_preferences(self._documents, user_id)
        system_prompt = prompts.chat_system_prompt(plan.id, preferences.roast_intensity, preferences.dev_nickname)

        async def _reply(check: LimitCheckResult) -> tuple[str, str, LimitCheckResult]:
            reply = await self._client.complete(session.build_chat_prompt(message), system_prompt, model=check.model)
            saved_id = await self._persist_exchange(user_id, chat, session, message, reply)
            return reply, saved_id, check

        reply, saved_id, check = await self._usage.guarded(user_id, UsageType.MESSAGE, _reply)
        session.record_exchange(message, reply)
        session.chat_id = saved_id
        return ChatReply(chat_id=saved_id, reply=reply, model=check.model, using_fallback=check.using_fallback)

    async def _persist_exchange(
        self,
        user_id: str,
        chat: Optional[Chat],
        session: AgentSession,
        message: str,
        reply: str,
    ) -> str:
        turns = [
            ChatTurn(role='user', content=message).model_dump(mode='json'),
            ChatTurn(role='assistant', content=reply).model_dump(mode='json'),
        ]
        if chat is None:
            chat_id = uuid.uuid4().hex
            now = _now_iso()
            await self._documents.set(
                self._path(user_id, chat_id),
                {
                    'title': chat_title(message),
                    'context': self._context_snapshot(session),
                    'messages': turns,
                    'createdAt': now,
                    'updatedAt': now,
                },
            )
            logger.debug('Created chat %s for %s', chat_id, user_id)
            return chat_id

        data = await self._documents.get(self._path(user_id, chat.id))
        if data is None:
            raise ChatNotFoundError(f'Chat {chat.id} not found')
        messages = list(data.get('messages') or []) + turns
        await self._documents.set(
            self._path(user_id, chat.id),
            {'messages': messages, 'updatedAt': _now_iso()},
            merge=True,
        )
        return chat.id
