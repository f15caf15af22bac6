from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class FileAssetResponse(BaseModel):
    id: int
    ownerId: int
    merchantId: int
    originalName: str
    storedName: str
    sizeBytes: int
    fileType: str
    mimeType: Optional[str] = None
    remarks: Optional[str] = None
    editCount: int = 0
    lastEditTime: Optional[datetime] = None
    uploadTime: datetime
    status: str
    processStatus: str

    model_config = ConfigDict(from_attributes=True)


class CustomerFileResponse(FileAssetResponse):
    """客户视角：附带商家名称"""

    merchantName: Optional[str] = None


class MerchantPhotoResponse(FileAssetResponse):
    """商家视角：附带最近一次下载结果"""

    downloadStatus: Optional[str] = None
    lastDownloadTime: Optional[datetime] = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CustomerFileListResponse(BaseModel):
    files: List[CustomerFileResponse]
    pagination: PaginationResponse


class MerchantPhotoListResponse(BaseModel):
    photos: List[MerchantPhotoResponse]
    pagination: PaginationResponse


class DuplicateCheckRequest(BaseModel):
    merchantId: Optional[int] = None
    fileNames: List[str] = Field(default_factory=list)


class DuplicateCheckResponse(BaseModel):
    duplicateFiles: List[str]


class StoredFileResponse(BaseModel):
    id: int
    originalName: str
    storedName: str
    size: int
    fileType: str


class UploadResponse(BaseModel):
    message: str
    files: List[StoredFileResponse]
    merchant: str
    uploadTime: str


class RemarksUpdate(BaseModel):
    remarks: Optional[str] = None


class RemarksUpdateResponse(BaseModel):
    message: str
    editCount: int
    remainingEdits: int


class ProcessStatusUpdate(BaseModel):
    processStatus: str


class MessageResponse(BaseModel):
    message: str
