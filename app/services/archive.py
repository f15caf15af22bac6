"""
商家下载：单文件直接流式输出，多文件边压缩边输出 ZIP。

- ZIP 写入一个不可 seek 的缓冲区，每写完一块就取走，内存里最多保留一块数据
- 磁盘上缺失的文件跳过并记一条失败台账，其余文件照常打包
- 打包完成后为每个已打包文件记一条成功台账 + 一条汇总操作日志；
  中途出错（包括客户端断开）则为所有待打包文件记失败台账
"""
from __future__ import annotations

import io
import itertools
import logging
import os
import time
import zipfile
from dataclasses import dataclass
from typing import Iterable, Iterator

from sqlalchemy.orm import Session

from app.core import errors
from app.core.access import Principal, can_review_assets, recipient_scope
from app.core.config import Settings
from app.core.storage import LocalStorage
from app.models import AssetStatus, DownloadStatus, DownloadType, FileAsset, OperationCode
from app.services.asset_store import AssetStore, UserStore
from app.services.audit import AuditLogger
from app.services.ledger import DownloadLedger, LedgerEntry


logger = logging.getLogger(__name__)

MISSING_ON_DISK = "文件不存在"
STREAM_ABORTED = "下载中断"


@dataclass
class DownloadStream:
    filename: str
    media_type: str
    chunks: Iterator[bytes]


@dataclass(frozen=True)
class _ArchiveTarget:
    id: int
    stored_name: str
    original_name: str


class _ChunkSink(io.RawIOBase):
    """zipfile 的输出目标：不支持 seek，写入的数据暂存到下一次 drain()"""

    def __init__(self):
        super().__init__()
        self._chunks: list[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def _unique_entry_name(name: str, seen: set[str]) -> str:
    base = (name or "").replace("\\", "/").split("/")[-1] or "file"
    stem, ext = os.path.splitext(base)
    candidate, n = base, 1
    while candidate in seen:
        candidate = f"{stem} ({n}){ext}"
        n += 1
    seen.add(candidate)
    return candidate


def parse_asset_ids(values: Iterable[str] | None) -> list[int]:
    """photoIds 可以是逗号分隔的字符串，也可以重复传参；非数字的值丢弃"""
    ids: list[int] = []
    for value in values or []:
        for part in str(value).split(","):
            part = part.strip()
            if part.isdigit():
                ids.append(int(part))
    if not ids:
        raise errors.ValidationError("请选择要下载的照片")
    return ids


class ArchiveBuilder:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        storage: LocalStorage,
        ledger: DownloadLedger,
        audit: AuditLogger,
    ):
        self.settings = settings
        self.storage = storage
        self.ledger = ledger
        self.audit = audit
        self.assets = AssetStore(db)
        self.users = UserStore(db)

    def _require_reviewer(self, principal: Principal) -> None:
        if not can_review_assets(principal):
            raise errors.AuthorizationError("权限不足")

    def _entry(
        self,
        principal: Principal,
        file_id: int,
        download_type: DownloadType,
        status: DownloadStatus,
        *,
        archive_path: str | None = None,
        error: str | None = None,
    ) -> LedgerEntry:
        return LedgerEntry(
            file_id=file_id,
            merchant_id=principal.id,
            download_type=download_type,
            status=status,
            archive_path=archive_path,
            error_message=error,
        )

    # ==================== 单文件 ====================

    def single(self, principal: Principal, asset_id: int) -> DownloadStream:
        self._require_reviewer(principal)
        asset = self.assets.get(
            asset_id,
            recipient_scope(principal),
            FileAsset.status == AssetStatus.ACTIVE.value,
        )
        if asset is None:
            raise errors.NotFoundError("照片不存在或无权限访问")
        return self._stream_file(principal, asset, f"下载照片: {asset.originalName}")

    def _stream_file(self, principal: Principal, asset: FileAsset, audit_details: str) -> DownloadStream:
        if not self.storage.exists(asset.storedName):
            logger.warning("下载文件不存在: asset=%s stored=%s", asset.id, asset.storedName)
            self.ledger.record(
                self._entry(principal, asset.id, DownloadType.SINGLE, DownloadStatus.FAILED, error=MISSING_ON_DISK)
            )
            raise errors.NotFoundError(MISSING_ON_DISK)

        asset_id, stored_name, stored_path = asset.id, asset.storedName, asset.storedPath

        def _iter() -> Iterator[bytes]:
            completed = False
            error = STREAM_ABORTED
            try:
                yield from self.storage.iter_chunks(stored_name, self.settings.DOWNLOAD_CHUNK_SIZE)
                completed = True
            except Exception as exc:
                error = str(exc) or STREAM_ABORTED
                logger.exception("文件下载失败: asset=%s", asset_id)
                raise
            finally:
                if completed:
                    self.ledger.record(
                        self._entry(principal, asset_id, DownloadType.SINGLE, DownloadStatus.SUCCESS, archive_path=stored_path)
                    )
                    self.audit.log(principal.id, OperationCode.DOWNLOAD_PHOTO, audit_details)
                else:
                    self.ledger.record(
                        self._entry(principal, asset_id, DownloadType.SINGLE, DownloadStatus.FAILED, error=error)
                    )

        return DownloadStream(
            filename=asset.originalName,
            media_type=asset.mimeType or "application/octet-stream",
            chunks=_iter(),
        )

    # ==================== 批量 ====================

    def customer_archive(
        self,
        principal: Principal,
        customer_id: int,
        asset_ids: list[int] | None = None,
    ) -> DownloadStream:
        """asset_ids 为 None 时打包该客户发给自己的全部有效文件，否则只打包选中的"""
        self._require_reviewer(principal)
        assets = self.assets.resolve_active(customer_id, principal.id, asset_ids)
        if not assets:
            raise errors.NotFoundError("没有可下载的照片")

        customer = self.users.get(customer_id)
        customer_name = customer.username if customer else f"customer_{customer_id}"

        # 只剩一个文件时不压缩，直接下载
        if len(assets) == 1:
            only = assets[0]
            return self._stream_file(principal, only, f"下载客户照片: {customer_name} - {only.originalName}")

        stamp = int(time.time() * 1000)
        if asset_ids is None:
            zip_name = f"{customer_name}_photos_{stamp}.zip"
            operation, label = OperationCode.BATCH_DOWNLOAD, "批量下载客户照片"
        else:
            zip_name = f"{customer_name}_selected_{len(assets)}photos_{stamp}.zip"
            operation, label = OperationCode.BATCH_DOWNLOAD_SELECTED, "批量下载选中照片"

        present = [a for a in assets if self.storage.exists(a.storedName)]
        missing = [a for a in assets if a not in present]
        if missing:
            logger.warning("批量下载跳过 %d 个缺失文件: %s", len(missing), [a.id for a in missing])
            self.ledger.record_many(
                self._entry(principal, a.id, DownloadType.BATCH, DownloadStatus.FAILED, error=MISSING_ON_DISK)
                for a in missing
            )
        if not present:
            raise errors.NotFoundError("没有可用的文件")

        targets = [_ArchiveTarget(id=a.id, stored_name=a.storedName, original_name=a.originalName) for a in present]
        chunks = self._zip_chunks(principal, targets, zip_name, operation, f"{label}: {customer_name}")
        # 先取第一块：检查之后文件全部消失时仍能在响应开始前返回 404
        first = next(chunks, b"")
        return DownloadStream(
            filename=zip_name,
            media_type="application/zip",
            chunks=itertools.chain([first], chunks),
        )

    def _zip_chunks(
        self,
        principal: Principal,
        targets: list[_ArchiveTarget],
        zip_name: str,
        operation: OperationCode,
        audit_label: str,
    ) -> Iterator[bytes]:
        chunk_size = self.settings.DOWNLOAD_CHUNK_SIZE
        sink = _ChunkSink()
        included: list[_ArchiveTarget] = []
        skipped: list[_ArchiveTarget] = []
        completed = False
        error = STREAM_ABORTED
        try:
            with zipfile.ZipFile(
                sink,
                mode="w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.settings.ZIP_COMPRESSION_LEVEL,
            ) as zf:
                seen: set[str] = set()
                for target in targets:
                    path = self.storage.path_for(target.stored_name)
                    try:
                        source = open(path, "rb")
                    except OSError as exc:
                        # 检查之后才消失的文件同样按缺失处理
                        logger.warning("文件不存在，跳过: %s (%s)", target.original_name, exc)
                        skipped.append(target)
                        self.ledger.record(
                            self._entry(principal, target.id, DownloadType.BATCH, DownloadStatus.FAILED, error=MISSING_ON_DISK)
                        )
                        continue
                    with source:
                        size = os.fstat(source.fileno()).st_size
                        entry_name = _unique_entry_name(target.original_name, seen)
                        with zf.open(entry_name, mode="w", force_zip64=size >= zipfile.ZIP64_LIMIT) as dest:
                            while True:
                                chunk = source.read(chunk_size)
                                if not chunk:
                                    break
                                dest.write(chunk)
                                data = sink.drain()
                                if data:
                                    yield data
                    included.append(target)
                    data = sink.drain()
                    if data:
                        yield data
                if not included:
                    raise errors.NotFoundError("没有可用的文件")
            # 关闭 ZipFile 时写入中央目录
            tail = sink.drain()
            if tail:
                yield tail
            completed = True
        except errors.NotFoundError:
            logger.warning("压缩下载中止，所有文件均已缺失: %s", zip_name)
            raise
        except Exception as exc:
            error = str(exc) or STREAM_ABORTED
            logger.exception("压缩下载失败: %s", zip_name)
            raise
        finally:
            if completed:
                logger.info("批量下载完成: %s (%d 个文件)", zip_name, len(included))
                self.ledger.record_many(
                    self._entry(principal, t.id, DownloadType.BATCH, DownloadStatus.SUCCESS, archive_path=zip_name)
                    for t in included
                )
                self.audit.log(principal.id, operation, f"{audit_label} ({len(included)}张)")
            else:
                self.ledger.record_many(
                    self._entry(principal, t.id, DownloadType.BATCH, DownloadStatus.FAILED, error=error)
                    for t in targets
                    if t not in skipped
                )

