from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ...dependencies import UserContext, get_account_service, get_user_context
from ...models.agent import AccountProfile, ProfileUpdate
from ...services.account import AccountService
from ...storage.documents import StoreUnavailableError
from ..errors import store_unavailable

router = APIRouter(prefix='/account', tags=['account'])


@router.get('/profile', response_model=AccountProfile)
async def get_profile(
    user: UserContext = Depends(get_user_context),
    account_service: AccountService = Depends(get_account_service),
) -> AccountProfile:
    try:
        return await account_service.get_profile(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.put('/profile', response_model=AccountProfile)
async def update_profile(
    payload: ProfileUpdate,
    user: UserContext = Depends(get_user_context),
    account_service: AccountService = Depends(get_account_service),
) -> AccountProfile:
    try:
        return await account_service.update_profile(user.user_id, payload)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.post('/reset', status_code=status.HTTP_204_NO_CONTENT)
async def reset_all_data(
    user: UserContext = Depends(get_user_context),
    account_service: AccountService = Depends(get_account_service),
) -> None:
    try:
        await account_service.reset_all_data(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc


@router.delete('', status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    user: UserContext = Depends(get_user_context),
    account_service: AccountService = Depends(get_account_service),
) -> None:
    try:
        await account_service.delete_account(user.user_id)
    except StoreUnavailableError as exc:
        raise store_unavailable() from exc
