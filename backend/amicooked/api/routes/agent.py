from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...dependencies import (
    UserContext,
    get_analysis_service,
    get_chat_service,
    get_session_manager,
    get_usage_service,
    get_user_context,
)
from ...models.agent import (
    MemoryToggleRequest,
    MemoryView,
    SessionEndResponse,
    SessionStartRequest,
    SessionStatus,
)
from ...services.agent import SessionManager
from ...services.analysis import AnalysisService
from ...services.chat import ChatNotFoundError, ChatService
from ...services.usage import UsageService
from ...storage.documents import StoreUnavailableError
from ..errors import store_unavailable

router = APIRouter(prefix='/agent', tags=['agent'])


@router.post('/session/start', response_model=SessionStatus)
async def start_session(
    payload: Optional[SessionStartRequest] = Body(default=None),
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
    sessions: SessionManager = Depends(get_session_manager),
    analysis_service: AnalysisService = Depends(get_analysis_service),
    chat_service: ChatService = Depends(get_chat_service),
) -> SessionStatus:
    payload = payload or SessionStartRequest()
    try:
        plan = await usage_service.get_plan_for_user(user.user_id)
        session = await sessions.start(user.user_id, plan)
        if payload.github_stats is not None:
            session.set_context(payload.github_stats, payload.user_profile, payload.analysis)
        elif session.analysis is None:
            latest = await analysis_service.get_latest_result(user.user_id)
            session.set_context(session.github_stats, session.user_profile, latest)
        if payload.chat_id:
            await chat_service.resume_chat(user.user_id, session, payload.chat_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    return session.status()


@router.post('/session/end', response_model=SessionEndResponse)
async def end_session(
    user: UserContext = Depends(get_user_context),
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionEndResponse:
    session = sessions.get(user.user_id)
    try:
        extracted = await sessions.end(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    memory_count = len(session.memory.items) if session is not None and session.memory_active else 0
    return SessionEndResponse(extracted=extracted, memory_count=memory_count)


@router.post('/session/clear', response_model=SessionStatus)
async def clear_session_history(
    user: UserContext = Depends(get_user_context),
    sessions: SessionManager = Depends(get_session_manager),
) -> SessionStatus:
    session = sessions.get(user.user_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='No active session')
    session.clear_history()
    return session.status()


@router.get('/memory', response_model=MemoryView)
async def get_memory(
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
    sessions: SessionManager = Depends(get_session_manager),
) -> MemoryView:
    try:
        plan = await usage_service.get_plan_for_user(user.user_id)
        return await sessions.memory_view(user.user_id, plan)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.delete('/memory', response_model=MemoryView)
async def clear_memory(
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
    sessions: SessionManager = Depends(get_session_manager),
) -> MemoryView:
    try:
        plan = await usage_service.get_plan_for_user(user.user_id)
        await sessions.clear_memory(user.user_id, plan)
        return await sessions.memory_view(user.user_id, plan)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.delete('/memory/{index}', response_model=MemoryView)
async def delete_memory_item(
    index: int,
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
    sessions: SessionManager = Depends(get_session_manager),
) -> MemoryView:
    try:
        plan = await usage_service.get_plan_for_user(user.user_id)
        await sessions.delete_memory_item(user.user_id, plan, index)
        return await sessions.memory_view(user.user_id, plan)
    except IndexError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.put('/memory/enabled', response_model=MemoryView)
async def toggle_memory(
    payload: MemoryToggleRequest,
    user: UserContext = Depends(get_user_context),
    usage_service: UsageService = Depends(get_usage_service),
    sessions: SessionManager = Depends(get_session_manager),
) -> MemoryView:
    try:
        plan = await usage_service.get_plan_for_user(user.user_id)
        return await sessions.set_memory_enabled(user.user_id, plan, payload.enabled)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
