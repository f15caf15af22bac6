from fastapi import APIRouter, Depends

from app.core.security import get_current_user
from app.models import User
from app.schemas.user import UserResponse

router = APIRouter()


@router.get("", response_model=UserResponse)
async def get_profile(current_user: User = Depends(get_current_user)):
    """当前登录用户信息"""
    return current_user
