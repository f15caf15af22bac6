"""
数据访问层：file_asset / user / operation_log 的读写都经过这里。

写操作只 flush 不 commit，事务边界由调用方（生命周期服务）决定。
"""
from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Query, Session
from sqlalchemy.sql.elements import ColumnElement

from app.models import AssetStatus, FileAsset, OperationLog, Role, User, UserStatus
from app.services.query_filters import PageParams


def paginate(query: Query, order_by: list, params: PageParams) -> tuple[list[Any], int]:
    """count 与 list 复用同一个 Query 对象，筛选条件天然一致"""
    total = query.order_by(None).count()
    if total == 0:
        return [], 0
    items = query.order_by(*order_by).offset(params.offset).limit(params.limit).all()
    return items, total


class AssetStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, asset: FileAsset) -> int:
        self.db.add(asset)
        self.db.flush()
        return asset.id

    def create_many(self, assets: list[FileAsset]) -> list[int]:
        self.db.add_all(assets)
        self.db.flush()
        return [asset.id for asset in assets]

    def get(self, asset_id: int, *predicates: ColumnElement[bool]) -> FileAsset | None:
        return self.db.query(FileAsset).filter(FileAsset.id == asset_id, *predicates).first()

    def query(self, *predicates: ColumnElement[bool]) -> Query:
        return self.db.query(FileAsset).filter(*predicates)

    def page(
        self,
        predicates: list[ColumnElement[bool]],
        order_by: list,
        params: PageParams,
    ) -> tuple[list[FileAsset], int]:
        return paginate(self.query(*predicates), order_by, params)

    def update(self, asset_id: int, values: dict[str, Any], *predicates: ColumnElement[bool]) -> int:
        """条件更新，返回受影响行数；0 表示记录不存在或前置状态不满足"""
        return (
            self.db.query(FileAsset)
            .filter(FileAsset.id == asset_id, *predicates)
            .update(values, synchronize_session="fetch")
        )

    def existing_names(self, owner_id: int, merchant_id: int, names: Iterable[str]) -> list[str]:
        wanted = sorted({name for name in names if name})
        if not wanted:
            return []
        rows = (
            self.db.query(FileAsset.originalName)
            .filter(
                FileAsset.ownerId == owner_id,
                FileAsset.merchantId == merchant_id,
                FileAsset.originalName.in_(wanted),
            )
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def resolve_active(
        self,
        owner_id: int,
        merchant_id: int,
        asset_ids: Iterable[int] | None = None,
    ) -> list[FileAsset]:
        query = self.query(
            FileAsset.ownerId == owner_id,
            FileAsset.merchantId == merchant_id,
            FileAsset.status == AssetStatus.ACTIVE.value,
        )
        if asset_ids is not None:
            ids = sorted(set(asset_ids))
            if not ids:
                return []
            query = query.filter(FileAsset.id.in_(ids))
        return query.order_by(FileAsset.uploadTime.asc(), FileAsset.id.asc()).all()


class UserStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_role(self, user_id: int, role: Role) -> User | None:
        return self.db.query(User).filter(User.id == user_id, User.role == role.value).first()

    def page(
        self,
        predicates: list[ColumnElement[bool]],
        order_by: list,
        params: PageParams,
    ) -> tuple[list[User], int]:
        return paginate(self.db.query(User).filter(*predicates), order_by, params)

    def active_merchants(self) -> list[User]:
        return (
            self.db.query(User)
            .filter(User.role == Role.MERCHANT.value, User.status == UserStatus.ACTIVE.value)
            .order_by(User.username.asc())
            .all()
        )

    def merchant_customers(self, merchant_id: int, params: PageParams) -> tuple[list[Any], int]:
        """给该商家上传过文件的客户，附带文件数与最近上传时间"""
        file_count = func.count(FileAsset.id).label("fileCount")
        last_upload = func.max(FileAsset.uploadTime).label("lastUploadTime")
        query = (
            self.db.query(User.id, User.username, User.status, file_count, last_upload)
            .join(FileAsset, FileAsset.ownerId == User.id)
            .filter(FileAsset.merchantId == merchant_id, User.role == Role.CUSTOMER.value)
            .group_by(User.id, User.username, User.status)
        )
        # 分组查询的 count() 会包一层子查询，统计的是去重后的客户数
        return paginate(query, [last_upload.desc(), User.id.desc()], params)

    def update(self, user_id: int, values: dict[str, Any]) -> int:
        return (
            self.db.query(User)
            .filter(User.id == user_id)
            .update(values, synchronize_session="fetch")
        )


class LogStore:
    def __init__(self, db: Session):
        self.db = db

    def page(
        self,
        predicates: list[ColumnElement[bool]],
        params: PageParams,
    ) -> tuple[list[Any], int]:
        query = (
            self.db.query(OperationLog, User.username, User.role)
            .outerjoin(User, OperationLog.userId == User.id)
            .filter(*predicates)
        )
        return paginate(query, [OperationLog.timestamp.desc(), OperationLog.id.desc()], params)
