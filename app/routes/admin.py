from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.access import Principal
from app.core.config import Settings, get_settings
from app.core.deps import get_user_admin
from app.core.security import get_current_principal
from app.schemas.file_asset import MessageResponse
from app.schemas.user import (
    OperationLogListResponse,
    PasswordResetRequest,
    UserListResponse,
    UserResponse,
    UserStatusUpdate,
)
from app.services.query_filters import PageParams
from app.services.user_admin import UserAdminService

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None, description="按用户名模糊搜索"),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: UserAdminService = Depends(get_user_admin),
    settings: Settings = Depends(get_settings),
):
    params = PageParams.from_query(page, limit, default_limit=20, max_limit=settings.MAX_PAGE_LIMIT)
    users, pagination = service.list_users(principal, search, params)
    return {"users": users, "pagination": pagination.as_dict()}


@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    body: UserStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    service: UserAdminService = Depends(get_user_admin),
):
    """启用/禁用用户；禁用必须填写原因"""
    return service.set_status(principal, user_id, body.status, body.reason)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: PasswordResetRequest,
    principal: Principal = Depends(get_current_principal),
    service: UserAdminService = Depends(get_user_admin),
):
    target = service.reset_password(principal, body.userId, body.newPassword)
    return MessageResponse(message=f"用户 {target.username} 的密码已重置")


@router.get("/logs", response_model=OperationLogListResponse)
async def list_logs(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: UserAdminService = Depends(get_user_admin),
    settings: Settings = Depends(get_settings),
):
    params = PageParams.from_query(page, limit, default_limit=50, max_limit=settings.MAX_PAGE_LIMIT)
    logs, pagination = service.operation_logs(principal, params)
    return {"logs": logs, "pagination": pagination.as_dict()}


@router.get("/logs/{user_id}", response_model=OperationLogListResponse)
async def list_user_logs(
    user_id: int,
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    principal: Principal = Depends(get_current_principal),
    service: UserAdminService = Depends(get_user_admin),
    settings: Settings = Depends(get_settings),
):
    """某个用户的操作日志"""
    params = PageParams.from_query(page, limit, default_limit=50, max_limit=settings.MAX_PAGE_LIMIT)
    logs, pagination = service.operation_logs(principal, params, user_id=user_id)
    return {"logs": logs, "pagination": pagination.as_dict()}
