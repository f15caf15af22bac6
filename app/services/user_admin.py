"""
后台用户管理：用户列表、启用/禁用、重置密码、操作日志查询。

管理员看全部；子管理员只能管理商家与客户（以及查看自己）。
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core import errors
from app.core.access import (
    Principal,
    can_administer,
    can_change_status,
    can_disable,
    can_reset_password,
    can_view_logs_of,
    log_scope,
    user_ordering,
    user_scope,
)
from app.core.database import transaction
from app.core.security import get_password_hash
from app.models import OperationCode, OperationLog, User, UserStatus
from app.services.asset_store import LogStore, UserStore
from app.services.audit import AuditLogger
from app.services.query_filters import PageParams, Pagination


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class UserAdminService:
    def __init__(self, db: Session, audit: AuditLogger):
        self.db = db
        self.audit = audit
        self.users = UserStore(db)
        self.logs = LogStore(db)

    def _require_admin(self, principal: Principal) -> None:
        if not can_administer(principal):
            raise errors.AuthorizationError("需要管理员权限")

    def _target(self, user_id: int) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise errors.NotFoundError("用户不存在")
        return user

    def list_users(
        self,
        principal: Principal,
        search: str | None,
        params: PageParams,
    ) -> tuple[list[User], Pagination]:
        self._require_admin(principal)
        predicates = [user_scope(principal)]
        keyword = (search or "").strip()
        if keyword:
            predicates.append(User.username.contains(keyword, autoescape=True))
        users, total = self.users.page(predicates, user_ordering(principal), params)
        return users, Pagination.of(params, total)

    def set_status(self, principal: Principal, user_id: int, status: str, reason: str | None = None) -> User:
        self._require_admin(principal)
        try:
            value = UserStatus(status)
        except ValueError:
            raise errors.ValidationError("无效的状态值")

        target = self._target(user_id)
        if not can_change_status(principal, target):
            raise errors.AuthorizationError("无权修改该用户状态")

        if value is UserStatus.DISABLED:
            if not can_disable(target):
                raise errors.AuthorizationError("不能禁用主管理员账户")
            reason = (reason or "").strip()
            if not reason:
                raise errors.ValidationError("禁用用户时必须填写原因")
            values = {User.status: value.value, User.disableReason: reason}
            operation, details = OperationCode.DISABLE_USER, f"禁用用户: {target.username} (ID: {target.id}), 原因: {reason}"
        else:
            # 启用时清空禁用原因
            values = {User.status: value.value, User.disableReason: None}
            operation, details = OperationCode.ENABLE_USER, f"启用用户: {target.username} (ID: {target.id})"

        with transaction(self.db):
            self.users.update(target.id, values)

        logger.info("用户 %s 将用户 %s 状态改为 %s", principal.id, target.id, value.value)
        self.audit.log(principal.id, operation, details)
        return self._target(user_id)

    def reset_password(self, principal: Principal, user_id: int, new_password: str) -> User:
        self._require_admin(principal)
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise errors.ValidationError(f"新密码长度至少{MIN_PASSWORD_LENGTH}位")
        target = self._target(user_id)
        if not can_reset_password(principal, target):
            raise errors.AuthorizationError("无权重置该用户的密码")

        with transaction(self.db):
            self.users.update(target.id, {User.password: get_password_hash(new_password)})

        self.audit.log(principal.id, OperationCode.RESET_PASSWORD, f"重置用户密码: {target.username} (ID: {target.id})")
        return target

    def operation_logs(
        self,
        principal: Principal,
        params: PageParams,
        user_id: int | None = None,
    ) -> tuple[list[dict[str, Any]], Pagination]:
        self._require_admin(principal)
        predicates = [log_scope(principal)]
        if user_id is not None:
            target = self._target(user_id)
            if not can_view_logs_of(principal, target):
                raise errors.AuthorizationError("无权查看该用户的操作日志")
            predicates.append(OperationLog.userId == user_id)

        rows, total = self.logs.page(predicates, params)
        items = [
            {
                "id": entry.id,
                "userId": entry.userId,
                "username": username,
                "userRole": role,
                "operation": entry.operation,
                "details": entry.details,
                "timestamp": entry.timestamp,
            }
            for entry, username, role in rows
        ]
        return items, Pagination.of(params, total)
