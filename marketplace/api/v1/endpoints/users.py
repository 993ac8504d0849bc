from typing import List, Optional
from fastapi import APIRouter, Depends, status
from marketplace.api.deps import get_marketplace
from marketplace.core.auth import Principal, get_current_principal
from marketplace.models.user import UserRole
from marketplace.schemas.user import UserCreate, UserResponse, UserStatusUpdate, UserUpdate
from marketplace.services.marketplace_service import MarketplaceService

router = APIRouter()

@router.post("/me", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_profile(
    user_in: UserCreate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Create the marketplace profile for the signed-in account"""
    return await service.register(principal, user_in)

@router.get("/me", response_model=UserResponse)
async def get_my_profile(
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Get current user profile"""
    return await service.get_me(principal)

@router.patch("/me", response_model=UserResponse)
async def update_my_profile(
    user_update: UserUpdate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Update current user profile"""
    return await service.update_profile(principal, user_update)

@router.get("/", response_model=List[UserResponse])
async def list_users(
    role: Optional[UserRole] = None,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """List marketplace members, optionally by role"""
    return await service.list_users(principal, role)

@router.patch("/{user_id}/status", response_model=UserResponse)
async def set_user_status(
    user_id: str,
    request: UserStatusUpdate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Suspend or reactivate a user (admin only)"""
    return await service.set_user_status(principal, user_id, request.status)
