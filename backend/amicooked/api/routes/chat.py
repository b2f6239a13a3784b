from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...clients.openrouter import AICallError
from ...dependencies import UserContext, get_chat_service, get_user_context
from ...models.agent import Chat, ChatMessageRequest, ChatReply
from ...services.chat import ChatNotFoundError, ChatService
from ...services.usage import LimitExceededError
from ...storage.documents import StoreUnavailableError
from ..errors import ai_failure, limit_exceeded, store_unavailable

router = APIRouter(prefix='/chats', tags=['chat'])


@router.post('/messages', response_model=ChatReply)
async def send_message(
    payload: ChatMessageRequest,
    user: UserContext = Depends(get_user_context),
    chat_service: ChatService = Depends(get_chat_service),
) -> ChatReply:
    try:
        return await chat_service.send_message(user.user_id, payload.message, chat_id=payload.chat_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LimitExceededError as exc:
        raise limit_exceeded(exc) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    except AICallError as exc:
        raise ai_failure(exc) from exc


@router.get('', response_model=list[Chat])
async def list_chats(
    user: UserContext = Depends(get_user_context),
    chat_service: ChatService = Depends(get_chat_service),
) -> list[Chat]:
    try:
        return await chat_service.list_chats(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.get('/{chat_id}', response_model=Chat)
async def get_chat(
    chat_id: str,
    user: UserContext = Depends(get_user_context),
    chat_service: ChatService = Depends(get_chat_service),
) -> Chat:
    try:
        return await chat_service.get_chat(user.user_id, chat_id)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
