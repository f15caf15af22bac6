"""
访问控制：把 (用户 id, 角色) 翻译成数据可见范围与操作能力。

每种操作对应一个能力函数，按角色查表，不在调用处写 if/else 分支。
可见范围以 SQLAlchemy 条件表达式返回，供查询层直接拼接。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from sqlalchemy import and_, case, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from app.models import BOOTSTRAP_ADMIN_ID, FileAsset, Role, User


@dataclass(frozen=True)
class Principal:
    """已验证的调用者"""

    id: int
    role: Role

    @classmethod
    def of(cls, user: User) -> "Principal":
        return cls(id=user.id, role=Role(user.role))


Scope = Callable[[Principal], ColumnElement[bool]]


# ==================== 文件可见范围 ====================

# 子管理员的扩展权限只覆盖用户列表与操作日志，不包括文件内容
_ASSET_SCOPES: dict[Role, Scope] = {
    Role.ADMIN: lambda p: true(),
    Role.SUB_ADMIN: lambda p: false(),
    Role.MERCHANT: lambda p: FileAsset.merchantId == p.id,
    Role.CUSTOMER: lambda p: FileAsset.ownerId == p.id,
}


def asset_scope(principal: Principal) -> ColumnElement[bool]:
    return _ASSET_SCOPES[principal.role](principal)


def owner_scope(principal: Principal) -> ColumnElement[bool]:
    """删除、恢复、改备注只允许上传者本人"""
    if principal.role != Role.CUSTOMER:
        return false()
    return FileAsset.ownerId == principal.id


def recipient_scope(principal: Principal) -> ColumnElement[bool]:
    """处理状态与下载只允许接收文件的商家"""
    if principal.role != Role.MERCHANT:
        return false()
    return FileAsset.merchantId == principal.id


# ==================== 用户管理范围 ====================

_MANAGEABLE_BY_SUB_ADMIN = (Role.MERCHANT.value, Role.CUSTOMER.value)

_USER_SCOPES: dict[Role, Scope] = {
    Role.ADMIN: lambda p: true(),
    Role.SUB_ADMIN: lambda p: or_(User.role.in_(_MANAGEABLE_BY_SUB_ADMIN), User.id == p.id),
    Role.MERCHANT: lambda p: false(),
    Role.CUSTOMER: lambda p: false(),
}


def user_scope(principal: Principal) -> ColumnElement[bool]:
    return _USER_SCOPES[principal.role](principal)


def log_scope(principal: Principal) -> ColumnElement[bool]:
    """操作日志可见范围；日志与 User 外连接，匿名条目的 User.role 为 NULL"""
    if principal.role == Role.SUB_ADMIN:
        return or_(
            User.role.in_(_MANAGEABLE_BY_SUB_ADMIN),
            User.role.is_(None),
            and_(User.role == Role.SUB_ADMIN.value, User.id == principal.id),
        )
    return _USER_SCOPES[principal.role](principal)


# 用户列表排序：自己最前，然后按角色优先级，最后按创建时间倒序
_ROLE_PRIORITY: dict[Role, tuple[Role, ...]] = {
    Role.ADMIN: (Role.ADMIN, Role.SUB_ADMIN, Role.MERCHANT, Role.CUSTOMER),
    Role.SUB_ADMIN: (Role.MERCHANT, Role.CUSTOMER),
}


def user_ordering(principal: Principal) -> list:
    ranks = _ROLE_PRIORITY.get(principal.role, ())
    whens = [(User.id == principal.id, 0)]
    whens.extend((User.role == role.value, index + 1) for index, role in enumerate(ranks))
    return [case(*whens, else_=len(ranks) + 1), User.createdAt.desc(), User.id.desc()]


# ==================== 能力判定 ====================

_UPLOADERS = frozenset({Role.CUSTOMER})
_REVIEWERS = frozenset({Role.MERCHANT})
_ADMINISTRATORS = frozenset({Role.ADMIN, Role.SUB_ADMIN})


def can_upload(principal: Principal) -> bool:
    return principal.role in _UPLOADERS


def can_review_assets(principal: Principal) -> bool:
    return principal.role in _REVIEWERS


def can_administer(principal: Principal) -> bool:
    return principal.role in _ADMINISTRATORS


def _sub_admin_reaches(principal: Principal, target: User) -> bool:
    return target.role in _MANAGEABLE_BY_SUB_ADMIN or target.id == principal.id


_TARGET_RULES: dict[Role, Callable[[Principal, User], bool]] = {
    Role.ADMIN: lambda p, target: True,
    Role.SUB_ADMIN: _sub_admin_reaches,
}


def can_view_user(principal: Principal, target: User) -> bool:
    rule = _TARGET_RULES.get(principal.role)
    return bool(rule and rule(principal, target))


def can_view_logs_of(principal: Principal, target: User) -> bool:
    return can_view_user(principal, target)


def can_reset_password(principal: Principal, target: User) -> bool:
    # 子管理员可以重置商家、客户以及自己的密码，不能动主管理员和其他子管理员
    return can_view_user(principal, target)


_STATUS_RULES: dict[Role, Callable[[Principal, User], bool]] = {
    Role.ADMIN: lambda p, target: True,
    Role.SUB_ADMIN: lambda p, target: target.role in _MANAGEABLE_BY_SUB_ADMIN,
}


def can_change_status(principal: Principal, target: User) -> bool:
    rule = _STATUS_RULES.get(principal.role)
    return bool(rule and rule(principal, target))


def can_disable(target: User) -> bool:
    return target.id != BOOTSTRAP_ADMIN_ID
