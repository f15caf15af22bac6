"""
列表查询：客户的上传记录、商家的客户列表与某客户的照片列表。

可见范围来自 access.asset_scope，筛选条件来自 query_filters，
两者拼在同一个查询上，count 与分页结果一致。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.core import errors
from app.core.access import Principal, asset_scope, can_review_assets, can_upload
from app.models import FileAsset, Role, User, utcnow
from app.services.asset_store import UserStore, paginate
from app.services.ledger import latest_download_subquery
from app.services.query_filters import PageParams, Pagination, asset_filters, default_asset_ordering


@dataclass(frozen=True)
class AssetFilters:
    process_status: str | None = None
    time_filter: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    def clauses(self) -> list:
        return asset_filters(
            process_status=self.process_status,
            time_filter=self.time_filter,
            start_date=self.start_date,
            end_date=self.end_date,
            now=utcnow(),
        )


def _asset_dict(asset: FileAsset, **extra: Any) -> dict[str, Any]:
    data = {column.name: getattr(asset, column.name) for column in FileAsset.__table__.columns}
    data.pop("storedPath", None)
    data.update(extra)
    return data


class AssetListing:
    def __init__(self, db: Session):
        self.db = db
        self.users = UserStore(db)

    def customer_uploads(
        self,
        principal: Principal,
        filters: AssetFilters,
        params: PageParams,
    ) -> tuple[list[dict[str, Any]], Pagination]:
        if not can_upload(principal):
            raise errors.AuthorizationError("权限不足")
        clauses = filters.clauses()
        query = (
            self.db.query(FileAsset, User.username)
            .outerjoin(User, User.id == FileAsset.merchantId)
            .filter(asset_scope(principal), *clauses)
        )
        rows, total = paginate(query, default_asset_ordering(), params)
        items = [_asset_dict(asset, merchantName=merchant_name) for asset, merchant_name in rows]
        return items, Pagination.of(params, total)

    def merchant_customers(self, principal: Principal, params: PageParams) -> tuple[list[Any], Pagination]:
        if not can_review_assets(principal):
            raise errors.AuthorizationError("权限不足")
        rows, total = self.users.merchant_customers(principal.id, params)
        return rows, Pagination.of(params, total)

    def customer_photos(
        self,
        principal: Principal,
        customer_id: int,
        filters: AssetFilters,
        params: PageParams,
    ) -> tuple[list[dict[str, Any]], Pagination]:
        """商家查看某客户发来的照片（含已删除的），附带最近一次下载结果"""
        if not can_review_assets(principal):
            raise errors.AuthorizationError("权限不足")
        customer = self.users.get_by_role(customer_id, Role.CUSTOMER)
        if customer is None:
            raise errors.NotFoundError("客户不存在")
        if not customer.is_active:
            raise errors.AuthorizationError("该客户已被禁用")

        clauses = filters.clauses()
        latest = latest_download_subquery(self.db, principal.id)
        query = (
            self.db.query(FileAsset, latest.c.downloadStatus, latest.c.lastDownloadTime)
            .outerjoin(latest, latest.c.fileId == FileAsset.id)
            .filter(asset_scope(principal), FileAsset.ownerId == customer_id, *clauses)
        )
        rows, total = paginate(query, default_asset_ordering(), params)
        items = [
            _asset_dict(asset, downloadStatus=download_status, lastDownloadTime=last_download)
            for asset, download_status, last_download in rows
        ]
        return items, Pagination.of(params, total)
