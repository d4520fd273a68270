from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bookings import AdmissionController
from config import Settings
from permissions import AuthorizationGate, Principal
from store import BookingStore

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


def get_controller(store: BookingStore = Depends(get_store)) -> AdmissionController:
    return AdmissionController(store)


def get_gate(store: BookingStore = Depends(get_store)) -> AuthorizationGate:
    return AuthorizationGate(store)


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: BookingStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Optional[Principal]:
    # No header means an anonymous caller; a bad token is an error
    if credentials is None:
        return None

    user = await store.find_user_by_token(credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(user_id=user.id, is_admin=user.id in settings.admin_user_ids)
