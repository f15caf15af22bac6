from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Index

from app.core.database import Base


def utcnow() -> datetime:
    # 统一以无时区的 UTC 时间入库
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    ADMIN = "admin"
    SUB_ADMIN = "sub_admin"
    MERCHANT = "merchant"
    CUSTOMER = "customer"


class UserStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


# 主管理员账户，永远不能被禁用
BOOTSTRAP_ADMIN_ID = 1


class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    password = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default=Role.CUSTOMER.value)
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    disableReason = Column(String(500), nullable=True)
    createdAt = Column(DateTime, default=utcnow, nullable=False)
    lastLogin = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_user_role_status", "role", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"
