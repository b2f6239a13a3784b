from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .analysis import AnalysisResult, GitHubStats, NICKNAME_MAX_LENGTH, Project, UserProfile


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MemoryType(str, Enum):
    INSIGHT = 'insight'
    SUMMARY = 'summary'
    GOAL = 'goal'
    OTHER = 'other'


class MemoryItem(_CamelModel):
    type: MemoryType = MemoryType.OTHER
    content: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now, alias='createdAt')

    @field_validator('type', mode='before')
    @classmethod
    def coerce_type(cls, value: Any) -> Any:
        # Older documents used 'action' for bookmarks and tracked tasks.
        if isinstance(value, str):
            label = value.strip().lower()
            return label if label in {item.value for item in MemoryType} else MemoryType.OTHER
        return value

    @field_validator('content', mode='before')
    @classmethod
    def strip_content(cls, value: Any) -> str:
        cleaned = str(value or '').strip()
        if not cleaned:
            raise ValueError('memory content must not be empty')
        return cleaned


class ChatTurn(_CamelModel):
    role: Literal['user', 'assistant']
    content: str
    timestamp: datetime = Field(default_factory=_now)


class AgentState(_CamelModel):
    """Persisted at ``users/{uid}/agent/state``."""

    memory: List[MemoryItem] = Field(default_factory=list)
    memory_enabled: bool = Field(default=True, alias='memoryEnabled')
    updated_at: Optional[datetime] = Field(default=None, alias='updatedAt')


class SessionContext(_CamelModel):
    github_stats: Optional[GitHubStats] = Field(default=None, alias='githubStats')
    user_profile: Optional[UserProfile] = Field(default=None, alias='userProfile')
    analysis: Optional[AnalysisResult] = None


class SessionStatus(_CamelModel):
    user_id: str = Field(alias='userId')
    plan: str
    chat_id: Optional[str] = Field(default=None, alias='chatId')
    message_count: int = Field(default=0, alias='messageCount')
    has_context: bool = Field(default=False, alias='hasContext')
    memory_enabled: bool = Field(default=False, alias='memoryEnabled')
    memory_count: int = Field(default=0, alias='memoryCount')
    last_activity: Optional[datetime] = Field(default=None, alias='lastActivity')


class SessionStartRequest(SessionContext):
    chat_id: Optional[str] = Field(default=None, alias='chatId')


class SessionEndResponse(_CamelModel):
    extracted: List[MemoryItem] = Field(default_factory=list)
    memory_count: int = Field(default=0, alias='memoryCount')


class MemoryView(_CamelModel):
    plan: str
    memory_limit: int = Field(alias='memoryLimit')
    memory_enabled: bool = Field(alias='memoryEnabled')
    items: List[MemoryItem] = Field(default_factory=list)


class MemoryToggleRequest(BaseModel):
    enabled: bool


class Chat(_CamelModel):
    id: str
    title: str
    context: Dict[str, Any] = Field(default_factory=dict)
    messages: List[ChatTurn] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias='createdAt')
    updated_at: Optional[datetime] = Field(default=None, alias='updatedAt')


class ChatMessageRequest(_CamelModel):
    message: str = Field(min_length=1, max_length=4000)
    chat_id: Optional[str] = Field(default=None, alias='chatId')

    @field_validator('message', mode='before')
    @classmethod
    def strip_message(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ChatReply(_CamelModel):
    chat_id: str = Field(alias='chatId')
    reply: str
    model: Optional[str] = None
    using_fallback: bool = Field(default=False, alias='usingFallback')


class SavedProject(Project):
    id: str
    messages: List[ChatTurn] = Field(default_factory=list)
    saved_at: Optional[datetime] = Field(default=None, alias='savedAt')
    updated_at: Optional[datetime] = Field(default=None, alias='updatedAt')


class ProjectMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)


class Preferences(_CamelModel):
    roast_intensity: str = Field(default='balanced', alias='roastIntensity')
    dev_nickname: Optional[str] = Field(default=None, alias='devNickname', max_length=NICKNAME_MAX_LENGTH)

    @field_validator('roast_intensity', mode='before')
    @classmethod
    def validate_intensity(cls, value: Optional[str]) -> str:
        label = (value or 'balanced').strip().lower()
        if label not in {'mild', 'balanced', 'brutal'}:
            raise ValueError(f"Unsupported roast intensity '{value}'")
        return label


class ProfileUpdate(_CamelModel):
    profile: Optional[UserProfile] = None
    preferences: Optional[Preferences] = None


class AccountProfile(_CamelModel):
    user_id: str = Field(alias='userId')
    plan: str
    profile: Optional[UserProfile] = None
    preferences: Preferences = Field(default_factory=Preferences)
