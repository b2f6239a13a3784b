from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...clients.openrouter import AICallError
from ...dependencies import UserContext, get_project_service, get_user_context
from ...models.agent import ChatReply, ProjectMessageRequest, SavedProject
from ...models.analysis import Project
from ...services.projects import ProjectNotFoundError, ProjectService
from ...services.usage import LimitExceededError
from ...storage.documents import StoreUnavailableError
from ..errors import ai_failure, limit_exceeded, store_unavailable

router = APIRouter(prefix='/projects/saved', tags=['projects'])


@router.get('', response_model=list[SavedProject])
async def list_saved_projects(
    user: UserContext = Depends(get_user_context),
    project_service: ProjectService = Depends(get_project_service),
) -> list[SavedProject]:
    try:
        return await project_service.list_saved_projects(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.post('', response_model=SavedProject, status_code=status.HTTP_201_CREATED)
async def save_project(
    project: Project,
    user: UserContext = Depends(get_user_context),
    project_service: ProjectService = Depends(get_project_service),
) -> SavedProject:
    try:
        return await project_service.save_project(user.user_id, project)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.delete('/{project_id}', status_code=status.HTTP_204_NO_CONTENT)
async def unsave_project(
    project_id: str,
    user: UserContext = Depends(get_user_context),
    project_service: ProjectService = Depends(get_project_service),
) -> None:
    try:
        await project_service.unsave_project(user.user_id, project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.post('/{project_id}/messages', response_model=ChatReply)
async def send_project_message(
    project_id: str,
    payload: ProjectMessageRequest,
    user: UserContext = Depends(get_user_context),
    project_service: ProjectService = Depends(get_project_service),
) -> ChatReply:
    try:
        return await project_service.send_project_message(user.user_id, project_id, payload.message.strip())
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except LimitExceededError as exc:
        raise limit_exceeded(exc) from exc
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
    except AICallError as exc:
        raise ai_failure(exc) from exc
