from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
import bcrypt
from fastapi import Depends, HTTPException, Query, status
from starlette.requests import Request
from app.core.access import Principal
from app.core.config import Settings, get_settings
from app.models import User
from app.core.database import get_db
from sqlalchemy.orm import Session


def get_password_hash(password: str) -> str:
    """获取密码哈希值"""
    if not password:
        raise ValueError("密码不能为空")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def create_access_token(
    data: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """创建 JWT Token（签发流程在外部，这里供脚本与测试使用）"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _resolve_user(token: str | None, db: Session, settings: Settings) -> User:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="访问令牌缺失",
        )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="无效的认证凭证",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在",
        )
    if not user.is_active:
        detail = "账户已被禁用"
        if user.disableReason:
            detail = f"{detail}，原因：{user.disableReason}"
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )
    return user


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """获取当前认证用户（Authorization 头）"""
    return _resolve_user(_bearer_token(request), db, settings)


async def get_download_user(
    request: Request,
    token: str | None = Query(None, description="浏览器直接发起的下载无法设置请求头"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """下载接口：Authorization 头优先，其次 ?token= 查询参数"""
    return _resolve_user(_bearer_token(request) or token, db, settings)


async def get_current_principal(current_user: User = Depends(get_current_user)) -> Principal:
    return Principal.of(current_user)


async def get_download_principal(current_user: User = Depends(get_download_user)) -> Principal:
    return Principal.of(current_user)
