from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from app.models import DownloadRecord, DownloadStatus, DownloadType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    file_id: int
    merchant_id: int
    download_type: DownloadType
    status: DownloadStatus
    archive_path: str | None = None
    error_message: str | None = None

    def to_row(self) -> DownloadRecord:
        return DownloadRecord(
            fileId=self.file_id,
            merchantId=self.merchant_id,
            downloadType=self.download_type.value,
            status=self.status.value,
            archivePath=self.archive_path,
            errorMessage=self.error_message[:500] if self.error_message else None,
        )


class DownloadLedger:
    """下载台账：只追加；写入失败只记日志，不向请求抛出"""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, entry: LedgerEntry) -> None:
        self.record_many([entry])

    def record_many(self, entries: Iterable[LedgerEntry]) -> None:
        rows = [entry.to_row() for entry in entries]
        if not rows:
            return
        db = self._session_factory()
        try:
            db.add_all(rows)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("记录下载状态失败（%d 条）: %s", len(rows), exc)
        finally:
            db.close()


def latest_download_subquery(db: Session, merchant_id: int):
    """每个 fileId 在该商家下最近一次下载记录（按自增 id 取最新）"""
    latest_ids = (
        db.query(func.max(DownloadRecord.id).label("id"))
        .filter(DownloadRecord.merchantId == merchant_id)
        .group_by(DownloadRecord.fileId)
        .subquery()
    )
    record = aliased(DownloadRecord)
    return (
        db.query(
            record.fileId.label("fileId"),
            record.status.label("downloadStatus"),
            record.downloadTime.label("lastDownloadTime"),
        )
        .join(latest_ids, latest_ids.c.id == record.id)
        .subquery()
    )
