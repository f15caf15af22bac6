from enum import Enum

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, ForeignKey, Index

from app.core.database import Base
from app.models.user import utcnow


class FileType(str, Enum):
    IMAGE = "image"
    ARCHIVE = "archive"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class ProcessStatus(str, Enum):
    """商家侧处理进度，取值之间没有强制的先后顺序"""

    RECEIVED = "received"
    PROCESSING = "processing"
    SHIPPED = "shipped"


class FileAsset(Base):
    """客户上传给某个商家的一个文件"""
    __tablename__ = "file_asset"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ownerId = Column(Integer, ForeignKey("user.id"), nullable=False)  # 上传的客户
    merchantId = Column(Integer, ForeignKey("user.id"), nullable=False)  # 接收的商家
    originalName = Column(String(255), nullable=False)
    storedName = Column(String(512), nullable=False, unique=True)  # 磁盘上的文件名
    storedPath = Column(String(1024), nullable=False)
    sizeBytes = Column(BigInteger, nullable=False)
    fileType = Column(String(16), nullable=False)  # 入库时确定，之后不变
    mimeType = Column(String(128), nullable=True)
    remarks = Column(String(500), nullable=True)
    editCount = Column(Integer, nullable=False, default=0)
    lastEditTime = Column(DateTime, nullable=True)
    uploadTime = Column(DateTime, default=utcnow, nullable=False)
    status = Column(String(16), nullable=False, default=AssetStatus.ACTIVE.value)
    processStatus = Column(String(16), nullable=False, default=ProcessStatus.RECEIVED.value)

    __table_args__ = (
        Index("idx_file_asset_owner_merchant", "ownerId", "merchantId"),
        Index("idx_file_asset_merchant_status", "merchantId", "status"),
        Index("idx_file_asset_upload_time", "uploadTime"),
    )

    def __repr__(self):
        return f"<FileAsset {self.id} {self.originalName} ({self.status})>"
