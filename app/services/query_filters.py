"""
列表查询的分页与筛选条件。

同一请求的 count 与 list 必须共用一组筛选条件，这里只负责生成条件，
执行交给 AssetStore.page()。
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum

from sqlalchemy import case
from sqlalchemy.sql.elements import ColumnElement

from app.core import errors
from app.models import AssetStatus, FileAsset, ProcessStatus


class TimeFilter(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    CUSTOM = "custom"


@dataclass(frozen=True)
class PageParams:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_query(cls, page: int | None, limit: int | None, *, default_limit: int, max_limit: int) -> "PageParams":
        page_num = page if page and page > 0 else 1
        limit_num = limit if limit and limit > 0 else default_limit
        return cls(page=page_num, limit=min(limit_num, max_limit))


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def of(cls, params: PageParams, total: int) -> "Pagination":
        return cls(
            page=params.page,
            limit=params.limit,
            total=total,
            pages=math.ceil(total / params.limit) if total else 0,
        )

    def as_dict(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise errors.ValidationError(f"{field} 格式应为 YYYY-MM-DD")


def time_window(
    time_filter: str | None,
    start_date: str | None,
    end_date: str | None,
    now: datetime,
) -> tuple[datetime | None, datetime | None]:
    """返回 [start, end] 闭区间（UTC），未知的筛选值忽略"""
    try:
        kind = TimeFilter(time_filter) if time_filter else None
    except ValueError:
        return None, None

    if kind is TimeFilter.TODAY:
        return datetime.combine(now.date(), time.min), None
    if kind is TimeFilter.WEEK:
        return now - timedelta(days=7), None
    if kind is TimeFilter.MONTH:
        return now - timedelta(days=30), None
    if kind is TimeFilter.CUSTOM:
        if not start_date or not end_date:
            raise errors.ValidationError("自定义时间筛选需要同时提供 startDate 和 endDate")
        start = _parse_day(start_date, "startDate")
        end = _parse_day(end_date, "endDate")
        if start > end:
            raise errors.ValidationError("startDate 不能晚于 endDate")
        return datetime.combine(start, time.min), datetime.combine(end, time.max)
    return None, None


def asset_filters(
    *,
    process_status: str | None,
    time_filter: str | None,
    start_date: str | None,
    end_date: str | None,
    now: datetime,
) -> list[ColumnElement[bool]]:
    clauses: list[ColumnElement[bool]] = []

    # 非法的处理状态直接忽略
    if process_status in {s.value for s in ProcessStatus}:
        clauses.append(FileAsset.processStatus == process_status)

    start, end = time_window(time_filter, start_date, end_date, now)
    if start is not None:
        clauses.append(FileAsset.uploadTime >= start)
    if end is not None:
        clauses.append(FileAsset.uploadTime <= end)
    return clauses


def default_asset_ordering() -> list:
    """未删除的排在前面，再按上传时间倒序"""
    return [
        case((FileAsset.status == AssetStatus.ACTIVE.value, 0), else_=1),
        FileAsset.uploadTime.desc(),
        FileAsset.id.desc(),
    ]
