from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, Request, status

from .clients.github import GitHubClient
from .clients.openrouter import OpenRouterClient
from .config import get_settings
from .services.account import AccountService
from .services.agent import AgentMemoryStore, SessionManager
from .services.analysis import AnalysisService
from .services.chat import ChatService
from .services.github_stats import GitHubStatsService
from .services.projects import ProjectService
from .services.usage import UsageService, build_usage_service
from .storage.documents import DocumentStore


@dataclass(frozen=True)
class UserContext:
    user_id: str
    github_token: Optional[str] = None


def get_user_context(request: Request) -> UserContext:
    user_id = (request.headers.get('x-user-id') or '').strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='X-User-Id header is required')
    token = (request.headers.get('x-github-token') or '').strip() or None
    return UserContext(user_id=user_id, github_token=token)


@lru_cache
def get_document_store() -> DocumentStore:
    return DocumentStore(get_settings().store_db_path)


@lru_cache
def get_openrouter_client() -> OpenRouterClient:
    return OpenRouterClient(settings=get_settings())


@lru_cache
def get_github_stats_service() -> GitHubStatsService:
    settings = get_settings()
    return GitHubStatsService(client=GitHubClient(settings=settings), settings=settings)


@lru_cache
def get_usage_service() -> UsageService:
    return build_usage_service(get_settings(), documents=get_document_store())


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager(
        store=AgentMemoryStore(get_document_store()),
        client=get_openrouter_client(),
        settings=get_settings(),
    )


@lru_cache
def get_analysis_service() -> AnalysisService:
    return AnalysisService(client=get_openrouter_client(), documents=get_document_store(), settings=get_settings())


@lru_cache
def get_chat_service() -> ChatService:
    return ChatService(
        documents=get_document_store(),
        usage=get_usage_service(),
        sessions=get_session_manager(),
        client=get_openrouter_client(),
    )


@lru_cache
def get_project_service() -> ProjectService:
    return ProjectService(
        documents=get_document_store(),
        usage=get_usage_service(),
        sessions=get_session_manager(),
        client=get_openrouter_client(),
    )


@lru_cache
def get_account_service() -> AccountService:
    usage = get_usage_service()
    return AccountService(
        documents=get_document_store(),
        usage_store=usage.store,
        sessions=get_session_manager(),
        plans=usage.plans,
    )
