from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime

from app.schemas.file_asset import PaginationResponse


class UserResponse(BaseModel):
    id: int
    username: str
    role: str
    status: str
    disableReason: Optional[str] = None
    createdAt: Optional[datetime] = None
    lastLogin: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MerchantOption(BaseModel):
    id: int
    username: str

    model_config = ConfigDict(from_attributes=True)


class MerchantCustomerResponse(BaseModel):
    id: int
    username: str
    status: str
    fileCount: int
    lastUploadTime: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MerchantCustomerListResponse(BaseModel):
    customers: List[MerchantCustomerResponse]
    pagination: PaginationResponse


class UserListResponse(BaseModel):
    users: List[UserResponse]
    pagination: PaginationResponse


class UserStatusUpdate(BaseModel):
    status: str
    reason: Optional[str] = None


class PasswordResetRequest(BaseModel):
    userId: int
    newPassword: str = Field(..., min_length=6)


class OperationLogResponse(BaseModel):
    id: int
    userId: Optional[int] = None
    username: Optional[str] = None
    userRole: Optional[str] = None
    operation: str
    details: Optional[str] = None
    timestamp: datetime


class OperationLogListResponse(BaseModel):
    logs: List[OperationLogResponse]
    pagination: PaginationResponse
