from enum import Enum

from sqlalchemy import Column, String, Integer, DateTime, Index

from app.core.database import Base
from app.models.user import utcnow


class DownloadType(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


class DownloadStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class DownloadRecord(Base):
    """下载台账：每次尝试追加一行，只增不改"""
    __tablename__ = "download_record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fileId = Column(Integer, nullable=False)
    merchantId = Column(Integer, nullable=False)
    downloadType = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    downloadTime = Column(DateTime, default=utcnow, nullable=False)
    archivePath = Column(String(512), nullable=True)
    errorMessage = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_download_record_file_merchant", "fileId", "merchantId"),
    )

    def __repr__(self):
        return f"<DownloadRecord file={self.fileId} {self.downloadType} {self.status}>"
