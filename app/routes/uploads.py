import os
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from app.core.access import Principal
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.deps import get_lifecycle, get_listing, get_upload_service
from app.core.security import get_current_principal
from app.schemas.file_asset import (
    CustomerFileListResponse,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    MessageResponse,
    RemarksUpdate,
    RemarksUpdateResponse,
    UploadResponse,
)
from app.schemas.user import MerchantOption
from app.services.asset_store import UserStore
from app.services.ingestion import IncomingFile, UploadService
from app.services.lifecycle import AssetLifecycle
from app.services.listing import AssetFilters, AssetListing
from app.services.query_filters import PageParams

router = APIRouter()


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, os.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


@router.get("/merchants", response_model=List[MerchantOption])
async def list_merchants(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """可选的商家（仅启用状态）"""
    return UserStore(db).active_merchants()


@router.post("/check-duplicate-files", response_model=DuplicateCheckResponse)
async def check_duplicate_files(
    body: DuplicateCheckRequest,
    principal: Principal = Depends(get_current_principal),
    service: UploadService = Depends(get_upload_service),
):
    """上传前预检重名文件，不做任何修改"""
    duplicates = service.check_duplicates(principal, body.merchantId, body.fileNames)
    return DuplicateCheckResponse(duplicateFiles=duplicates)


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    files: Optional[List[UploadFile]] = File(None),
    merchantId: Optional[int] = Form(None),
    remarks: Optional[str] = Form(None),
    allowDuplicates: bool = Form(False),
    principal: Principal = Depends(get_current_principal),
    service: UploadService = Depends(get_upload_service),
):
    incoming = [
        IncomingFile(
            filename=upload.filename or "",
            content_type=upload.content_type,
            size=_upload_size(upload),
            stream=upload.file,
        )
        for upload in files or []
    ]
    manifest = service.accept(principal, merchantId, incoming, remarks=remarks, allow_duplicates=allowDuplicates)
    return UploadResponse(
        message=f"成功上传{len(manifest.files)}个文件",
        files=[asdict(f) for f in manifest.files],
        merchant=manifest.merchant,
        uploadTime=manifest.uploadTime,
    )


@router.get("/uploads", response_model=CustomerFileListResponse)
async def list_my_uploads(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    status: Optional[str] = Query(None, description="处理状态：received / processing / shipped"),
    timeFilter: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    listing: AssetListing = Depends(get_listing),
    settings: Settings = Depends(get_settings),
):
    """我的上传记录"""
    params = PageParams.from_query(page, limit, default_limit=10, max_limit=settings.MAX_PAGE_LIMIT)
    filters = AssetFilters(process_status=status, time_filter=timeFilter, start_date=startDate, end_date=endDate)
    files, pagination = listing.customer_uploads(principal, filters, params)
    return {"files": files, "pagination": pagination.as_dict()}


@router.put("/uploads/{file_id}/remarks", response_model=RemarksUpdateResponse)
async def update_remarks(
    file_id: int,
    body: RemarksUpdate,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AssetLifecycle = Depends(get_lifecycle),
):
    result = lifecycle.edit_remarks(principal, file_id, body.remarks)
    return RemarksUpdateResponse(
        message="备注更新成功",
        editCount=result.editCount,
        remainingEdits=result.remainingEdits,
    )


@router.delete("/uploads/{file_id}", response_model=MessageResponse)
async def delete_upload(
    file_id: int,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AssetLifecycle = Depends(get_lifecycle),
):
    """软删除：只改状态，文件保留在磁盘上"""
    lifecycle.soft_delete(principal, file_id)
    return MessageResponse(message="文件删除成功")


@router.put("/uploads/{file_id}/restore", response_model=MessageResponse)
async def restore_upload(
    file_id: int,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AssetLifecycle = Depends(get_lifecycle),
):
    lifecycle.restore(principal, file_id)
    return MessageResponse(message="文件恢复成功")
