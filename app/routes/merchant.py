from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.core.access import Principal
from app.core.config import Settings, get_settings
from app.core.deps import get_archive_builder, get_lifecycle, get_listing
from app.core.security import get_current_principal, get_download_principal
from app.schemas.file_asset import FileAssetResponse, MerchantPhotoListResponse, ProcessStatusUpdate
from app.schemas.user import MerchantCustomerListResponse
from app.services.archive import ArchiveBuilder, DownloadStream, parse_asset_ids
from app.services.lifecycle import AssetLifecycle
from app.services.listing import AssetFilters, AssetListing
from app.services.query_filters import PageParams

router = APIRouter()


def _attachment(stream: DownloadStream) -> StreamingResponse:
    # URL 编码文件名以支持中文
    encoded_filename = quote(stream.filename)
    return StreamingResponse(
        stream.chunks,
        media_type=stream.media_type,
        headers={
            "Content-Disposition": f"attachment; filename=\"{encoded_filename}\"; filename*=UTF-8''{encoded_filename}"
        },
    )


@router.get("/customers", response_model=MerchantCustomerListResponse)
async def list_customers(
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    principal: Principal = Depends(get_current_principal),
    listing: AssetListing = Depends(get_listing),
    settings: Settings = Depends(get_settings),
):
    """给我上传过文件的客户"""
    params = PageParams.from_query(page, limit, default_limit=20, max_limit=settings.MAX_PAGE_LIMIT)
    customers, pagination = listing.merchant_customers(principal, params)
    return {"customers": customers, "pagination": pagination.as_dict()}


@router.get("/customer/{customer_id}/photos", response_model=MerchantPhotoListResponse)
async def list_customer_photos(
    customer_id: int,
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
    params = PageParams.from_query(page, limit, default_limit=20, max_limit=settings.MAX_PAGE_LIMIT)
    filters = AssetFilters(process_status=status, time_filter=timeFilter, start_date=startDate, end_date=endDate)
    photos, pagination = listing.customer_photos(principal, customer_id, filters, params)
    return {"photos": photos, "pagination": pagination.as_dict()}


@router.put("/photo/{photo_id}/status", response_model=FileAssetResponse)
async def update_photo_status(
    photo_id: int,
    body: ProcessStatusUpdate,
    principal: Principal = Depends(get_current_principal),
    lifecycle: AssetLifecycle = Depends(get_lifecycle),
):
    return lifecycle.set_process_status(principal, photo_id, body.processStatus)


@router.get("/photo/{photo_id}/download")
async def download_photo(
    photo_id: int,
    principal: Principal = Depends(get_download_principal),
    builder: ArchiveBuilder = Depends(get_archive_builder),
):
    return _attachment(builder.single(principal, photo_id))


@router.get("/customer/{customer_id}/download-all")
async def download_all(
    customer_id: int,
    principal: Principal = Depends(get_download_principal),
    builder: ArchiveBuilder = Depends(get_archive_builder),
):
    """打包下载该客户发来的全部有效照片"""
    return _attachment(builder.customer_archive(principal, customer_id))


@router.get("/customer/{customer_id}/download-selected")
async def download_selected(
    customer_id: int,
    photoIds: Optional[List[str]] = Query(None, description="逗号分隔或重复传参"),
    principal: Principal = Depends(get_download_principal),
    builder: ArchiveBuilder = Depends(get_archive_builder),
):
    asset_ids = parse_asset_ids(photoIds)
    return _attachment(builder.customer_archive(principal, customer_id, asset_ids))
