"""Agent memory: long-term notes per user plus the short-term chat window of a session."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Sequence

from pydantic import ValidationError

from ..clients.openrouter import AICallError, OpenRouterClient
from ..config import Settings
from ..models.agent import AgentState, ChatTurn, MemoryItem, MemoryView, SessionStatus
from ..models.analysis import AnalysisResult, GitHubStats, UserProfile
from ..models.usage import PlanConfig
from ..storage.documents import DocumentStore
from . import prompts
from .scoring import MalformedAIResponseError, extract_json

logger = logging.getLogger(__name__)


class AgentMemory:
    """A FIFO buffer of memory items bounded by the plan, and a rolling window of chat turns.

    When the buffer is full the oldest item is evicted. A limit of 0 keeps nothing.
    """

    def __init__(
        self,
        memory_limit: int,
        history_window: int = 10,
        item_max_length: int = 500,
        items: Optional[Sequence[MemoryItem]] = None,
    ) -> None:
        self._limit = max(0, memory_limit)
        self._item_max_length = item_max_length
        self._items: Deque[MemoryItem] = deque(maxlen=self._limit)
        self._history: Deque[ChatTurn] = deque(maxlen=max(1, history_window))
        for item in items or ():
            self.add_item(item)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def items(self) -> List[MemoryItem]:
        return list(self._items)

    @property
    def history(self) -> List[ChatTurn]:
        return list(self._history)

    def add_item(self, item: MemoryItem) -> Optional[MemoryItem]:
        if self._limit == 0:
            return None
        if len(item.content) > self._item_max_length:
            item = item.model_copy(update={'content': item.content[: self._item_max_length].rstrip()})
        self._items.append(item)
        return item

    def clear_memory(self) -> None:
        self._items.clear()

    def replace_items(self, items: Sequence[MemoryItem]) -> None:
        self._items.clear()
        for item in items:
            self.add_item(item)

    def add_turn(self, role: str, content: str) -> ChatTurn:
        turn = ChatTurn(role=role, content=content)
        self._history.append(turn)
        return turn

    def load_history(self, turns: Sequence[ChatTurn]) -> None:
        self._history.clear()
        self._history.extend(turns)

    def clear_history(self) -> None:
        self._history.clear()


class AgentMemoryStore:
    """Reads and writes ``users/{uid}/agent/state``."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    @staticmethod
    def _path(user_id: str) -> str:
        return f'users/{user_id}/agent/state'

    async def load(self, user_id: str) -> AgentState:
        data = await self._documents.get(self._path(user_id))
        if not data:
            return AgentState()
        try:
            return AgentState.model_validate(data)
        except ValidationError:
            logger.warning('Discarding unreadable agent state for %s', user_id)
            return AgentState()

    async def save(self, user_id: str, plan: PlanConfig, state: AgentState) -> AgentState:
        if plan.memory_limit <= 0:
            return state
        memory = state.memory[-plan.memory_limit:]
        stored = state.model_copy(update={'memory': memory, 'updated_at': datetime.now(timezone.utc)})
        await self._documents.set(self._path(user_id), stored.model_dump(mode='json', by_alias=True))
        return stored


def parse_memory_items(reply: str) -> List[MemoryItem]:
    raw = extract_json(reply, kind='array')
    items: List[MemoryItem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(MemoryItem(type=entry.get('type', 'other'), content=entry.get('content', '')))
        except ValidationError:
            logger.debug('Skipping invalid extracted memory item %r', entry)
    return items


class AgentSession:
    """The state of one user's conversation with the agent."""

    def __init__(
        self,
        user_id: str,
        plan: PlanConfig,
        store: AgentMemoryStore,
        client: OpenRouterClient,
        settings: Settings,
    ) -> None:
        self.user_id = user_id
        self.plan = plan
        self.chat_id: Optional[str] = None
        self.memory_enabled = False
        self.github_stats: Optional[GitHubStats] = None
        self.user_profile: Optional[UserProfile] = None
        self.analysis: Optional[AnalysisResult] = None
        self.memory = AgentMemory(plan.memory_limit, settings.history_window, settings.memory_item_max_length)
        self._store = store
        self._client = client
        self._settings = settings
        self._had_user_turn = False

    @property
    def memory_active(self) -> bool:
        return self.plan.memory_limit > 0 and self.memory_enabled

    async def start(self) -> None:
        if self.plan.memory_limit <= 0:
            return
        state = await self._store.load(self.user_id)
        self.memory_enabled = state.memory_enabled
        if self.memory_enabled:
            self.memory = AgentMemory(
                self.plan.memory_limit,
                self._settings.history_window,
                self._settings.memory_item_max_length,
                items=state.memory,
            )
        logger.debug('Session for %s started with %s memory items', self.user_id, len(self.memory.items))

    def set_context(
        self,
        github_stats: Optional[GitHubStats],
        user_profile: Optional[UserProfile],
        analysis: Optional[AnalysisResult] = None,
    ) -> None:
        self.github_stats = github_stats
        self.user_profile = user_profile
        self.analysis = analysis

    def switch_chat(self, chat_id: Optional[str], messages: Sequence[ChatTurn] = ()) -> None:
        """Flush the conversation window, then load the last turns of ``chat_id``."""
        if chat_id is not None and chat_id == self.chat_id:
            return
        self.memory.clear_history()
        self.memory.load_history(messages)
        self.chat_id = chat_id

    def clear_history(self) -> None:
        self.memory.clear_history()

    def record_exchange(self, user_message: str, reply: str) -> None:
        self.memory.add_turn('user', user_message)
        self.memory.add_turn('assistant', reply)
        self._had_user_turn = True

    def build_chat_prompt(self, message: str) -> str:
        sections: List[str] = []
        if self.github_stats is not None:
            sections.append(
                prompts.format_github_metrics(self.github_stats, self.user_profile, detailed=self.plan.detailed_stats)
            )
        analysis_block = prompts.format_analysis_context(self.analysis)
        if analysis_block:
            sections.append(analysis_block)
        if self.memory_active:
            memory_block = prompts.format_memory(self.memory.items)
            if memory_block:
                sections.append(memory_block)
        history = self.memory.history
        if history:
            sections.append(f'# CONVERSATION HISTORY\n{prompts.format_history(history)}')
        sections.append(
            f'# USER MESSAGE\n{message}\n\n'
            'Respond based on the context above. Be specific to their actual metrics and give actionable advice.'
        )
        return '\n\n'.join(sections)

    async def end(self) -> List[MemoryItem]:
        extracted: List[MemoryItem] = []
        if self.memory_active and self._had_user_turn:
            extracted = await self._extract_memory()
            for item in extracted:
                self.memory.add_item(item)
            await self._store.save(
                self.user_id,
                self.plan,
                AgentState(memory=self.memory.items, memory_enabled=self.memory_enabled),
            )
        self.memory.clear_history()
        self.chat_id = None
        self._had_user_turn = False
        return extracted

    async def _extract_memory(self) -> List[MemoryItem]:
        prompt = prompts.memory_extraction_prompt(self.memory.history, self.memory.items)
        try:
            reply = await self._client.complete(
                prompt, prompts.MEMORY_EXTRACTION_INSTRUCTIONS, model=self.plan.models.primary
            )
            items = parse_memory_items(reply)
        except (AICallError, MalformedAIResponseError) as exc:
            logger.warning('Memory extraction for %s failed; keeping existing memory: %s', self.user_id, exc)
            return []
        logger.debug('Extracted %s memory items for %s', len(items), self.user_id)
        return items

    def status(self) -> SessionStatus:
        history = self.memory.history
        return SessionStatus(
            user_id=self.user_id,
            plan=self.plan.id,
            chat_id=self.chat_id,
            message_count=len(history),
            has_context=self.github_stats is not None,
            memory_enabled=self.memory_active,
            memory_count=len(self.memory.items),
            last_activity=history[-1].timestamp if history else None,
        )


class SessionManager:
    """Owns at most one active session per user in this process."""

    def __init__(self, store: AgentMemoryStore, client: OpenRouterClient, settings: Settings) -> None:
        self._store = store
        self._client = client
        self._settings = settings
        self._sessions: Dict[str, AgentSession] = {}
        self._lock = asyncio.Lock()

    @property
    def store(self) -> AgentMemoryStore:
        return self._store

    def get(self, user_id: str) -> Optional[AgentSession]:
        return self._sessions.get(user_id)

    async def start(self, user_id: str, plan: PlanConfig) -> AgentSession:
        async with self._lock:
            existing = self._sessions.get(user_id)
            if existing is not None and existing.plan.id == plan.id:
                return existing
            session = AgentSession(user_id, plan, self._store, self._client, self._settings)
            await session.start()
            self._sessions[user_id] = session
            return session

    async def get_or_start(self, user_id: str, plan: PlanConfig) -> AgentSession:
        session = self._sessions.get(user_id)
        if session is not None and session.plan.id == plan.id:
            return session
        return await self.start(user_id, plan)

    async def end(self, user_id: str) -> List[MemoryItem]:
        async with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is None:
            return []
        return await session.end()

    def discard(self, user_id: str) -> None:
        self._sessions.pop(user_id, None)

    async def memory_view(self, user_id: str, plan: PlanConfig) -> MemoryView:
        if plan.memory_limit <= 0:
            return MemoryView(plan=plan.id, memory_limit=0, memory_enabled=False, items=[])
        state = await self._store.load(user_id)
        return MemoryView(
            plan=plan.id,
            memory_limit=plan.memory_limit,
            memory_enabled=state.memory_enabled,
            items=state.memory[-plan.memory_limit:],
        )

    async def add_memory(self, user_id: str, plan: PlanConfig, item: MemoryItem) -> None:
        if plan.memory_limit <= 0:
            return
        session = self._sessions.get(user_id)
        state = await self._store.load(user_id)
        if not state.memory_enabled:
            return
        buffer = AgentMemory(
            plan.memory_limit, self._settings.history_window, self._settings.memory_item_max_length, state.memory
        )
        buffer.add_item(item)
        await self._store.save(user_id, plan, state.model_copy(update={'memory': buffer.items}))
        if session is not None and session.memory_active:
            session.memory.add_item(item)

    async def clear_memory(self, user_id: str, plan: PlanConfig) -> None:
        state = await self._store.load(user_id)
        await self._store.save(user_id, plan, state.model_copy(update={'memory': []}))
        session = self._sessions.get(user_id)
        if session is not None:
            session.memory.clear_memory()

    async def delete_memory_item(self, user_id: str, plan: PlanConfig, index: int) -> MemoryItem:
        state = await self._store.load(user_id)
        # Index into the same window memory_view shows for this plan.
        memory = list(state.memory[-plan.memory_limit:]) if plan.memory_limit > 0 else []
        if index < 0 or index >= len(memory):
            raise IndexError(f'memory index {index} out of range')
        removed = memory.pop(index)
        await self._store.save(user_id, plan, state.model_copy(update={'memory': memory}))
        session = self._sessions.get(user_id)
        if session is not None and session.memory_active:
            session.memory.replace_items(memory)
        return removed

    async def set_memory_enabled(self, user_id: str, plan: PlanConfig, enabled: bool) -> MemoryView:
        if plan.memory_limit > 0:
            state = await self._store.load(user_id)
            await self._store.save(user_id, plan, state.model_copy(update={'memory_enabled': enabled}))
            session = self._sessions.get(user_id)
            if session is not None:
                if enabled and not session.memory_enabled:
                    # The session skipped loading while memory was off.
                    session.memory.replace_items(state.memory)
                session.memory_enabled = enabled
        return await self.memory_view(user_id, plan)
