"""Auth endpoints: registration, login, own profile."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.middleware import AuthenticatedUser, verify_request
from marketplace.auth.rate_limit import check_rate_limit, get_client_ip
from marketplace.database import get_db
from marketplace.schemas.user import (
    RoleChange,
    TokenResponse,
    UserLogin,
    UserRegister,
    UserResponse,
    UserUpdate,
)
from marketplace.services import user as user_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=201,
    dependencies=[Depends(check_rate_limit)],
)
async def register(
    data: UserRegister,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Create a customer or provider account. KVKK consent is mandatory."""
    user, token = await user_service.register(db, data, client_ip=get_client_ip(request))
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(check_rate_limit)])
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    user, token = await user_service.login(db, data)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/profile", response_model=UserResponse, dependencies=[Depends(check_rate_limit)])
async def get_profile(
    auth: AuthenticatedUser = Depends(verify_request),
) -> UserResponse:
    return UserResponse.model_validate(auth.user)


@router.patch("/profile", response_model=UserResponse, dependencies=[Depends(check_rate_limit)])
async def update_profile(
    data: UserUpdate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Update whitelisted profile fields. Unknown fields are rejected."""
    user = await user_service.update_profile(db, auth.user, data)
    return UserResponse.model_validate(user)


@router.patch("/profile/role", response_model=TokenResponse, dependencies=[Depends(check_rate_limit)])
async def change_role(
    data: RoleChange,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    """Switch between customer and provider. Returns a fresh token carrying the new role."""
    user, token = await user_service.change_role(db, auth.user, data.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))
