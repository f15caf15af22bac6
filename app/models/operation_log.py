from enum import Enum

from sqlalchemy import Column, String, Integer, DateTime, Text, Index

from app.core.database import Base
from app.models.user import utcnow


class OperationCode(str, Enum):
    UPLOAD_FILES = "upload_files"
    DELETE_FILE = "delete_file"
    RESTORE_FILE = "restore_file"
    EDIT_REMARKS = "edit_remarks"
    UPDATE_PHOTO_STATUS = "update_photo_status"
    DOWNLOAD_PHOTO = "download_photo"
    BATCH_DOWNLOAD = "batch_download"
    BATCH_DOWNLOAD_SELECTED = "batch_download_selected"
    DISABLE_USER = "disable_user"
    ENABLE_USER = "enable_user"
    RESET_PASSWORD = "reset_password"


class OperationLog(Base):
    """操作审计日志：只追加，不修改也不删除"""
    __tablename__ = "operation_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # 身份尚未确认的失败操作没有 userId
    userId = Column(Integer, nullable=True, index=True)
    operation = Column(String(64), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_operation_log_timestamp", "timestamp"),
    )

    def __repr__(self):
        return f"<OperationLog user={self.userId} {self.operation}>"
