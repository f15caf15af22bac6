"""
文件上传入库。

所有校验（商家、数量、类型、图片总大小、重名）都在写磁盘和写库之前完成；
文件先落盘，再在同一个事务里插入全部记录，失败则回滚并清理已写入的文件。
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from sqlalchemy.orm import Session

from app.core import errors
from app.core.access import Principal, can_upload
from app.core.config import Settings
from app.core.database import transaction
from app.core.storage import LocalStorage, generate_stored_name
from app.models import FileAsset, FileType, OperationCode, Role, User, utcnow
from app.services.asset_store import AssetStore, UserStore
from app.services.audit import AuditLogger


logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
ARCHIVE_MIME_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/vnd.rar",
    "application/x-rar",
    "application/x-7z-compressed",
}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
ARCHIVE_EXTENSIONS = {".zip", ".rar", ".7z"}


@dataclass
class IncomingFile:
    filename: str
    content_type: str | None
    size: int
    stream: BinaryIO

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower()

    @property
    def mime(self) -> str:
        return (self.content_type or "").lower()


def is_allowed(file: IncomingFile) -> bool:
    """MIME 类型或扩展名任一命中白名单即可"""
    return (
        file.mime in IMAGE_MIME_TYPES
        or file.mime in ARCHIVE_MIME_TYPES
        or file.extension in IMAGE_EXTENSIONS
        or file.extension in ARCHIVE_EXTENSIONS
    )


def classify(file: IncomingFile) -> FileType:
    if file.mime.startswith("image/") or file.extension in IMAGE_EXTENSIONS:
        return FileType.IMAGE
    return FileType.ARCHIVE


@dataclass(frozen=True)
class StoredFile:
    id: int
    originalName: str
    storedName: str
    size: int
    fileType: str


@dataclass(frozen=True)
class UploadManifest:
    files: list[StoredFile]
    merchant: str
    uploadTime: str


class UploadService:
    def __init__(self, db: Session, settings: Settings, storage: LocalStorage, audit: AuditLogger):
        self.db = db
        self.settings = settings
        self.storage = storage
        self.audit = audit
        self.assets = AssetStore(db)
        self.users = UserStore(db)

    def _require_uploader(self, principal: Principal) -> None:
        if not can_upload(principal):
            raise errors.AuthorizationError("只有客户可以上传文件")

    def _require_merchant(self, merchant_id: int | None) -> User:
        if not merchant_id:
            raise errors.ValidationError("请选择商家")
        merchant = self.users.get_by_role(merchant_id, Role.MERCHANT)
        if merchant is None:
            raise errors.ValidationError("选择的商家不存在")
        if not merchant.is_active:
            raise errors.AuthorizationError("选择的商家已被禁用，无法上传文件")
        return merchant

    def check_duplicates(self, principal: Principal, merchant_id: int | None, file_names: Iterable[str]) -> list[str]:
        """预检：返回该客户发给该商家的记录中已存在的原始文件名，不做任何修改"""
        self._require_uploader(principal)
        if not merchant_id:
            raise errors.ValidationError("缺少必要参数")
        return self.assets.existing_names(principal.id, merchant_id, file_names)

    def _validate_batch(self, files: list[IncomingFile], remarks: str | None) -> list[FileType]:
        if not files:
            raise errors.ValidationError("请选择要上传的文件")
        if len(files) > self.settings.MAX_FILES_PER_UPLOAD:
            raise errors.ValidationError(f"文件数量超过限制（{self.settings.MAX_FILES_PER_UPLOAD}个）")
        if remarks and len(remarks) > self.settings.MAX_REMARKS_LENGTH:
            raise errors.ValidationError(f"备注长度不能超过{self.settings.MAX_REMARKS_LENGTH}字符")

        rejected = [f.filename for f in files if not is_allowed(f)]
        if rejected:
            raise errors.ValidationError(
                "不支持的文件类型。只允许上传图片（jpg, png, gif, webp）和压缩包（zip, rar, 7z）",
                rejectedFiles=rejected,
            )

        types = [classify(f) for f in files]
        image_bytes = sum(f.size for f, t in zip(files, types) if t is FileType.IMAGE)
        if image_bytes > self.settings.MAX_IMAGE_BATCH_BYTES:
            limit_mb = self.settings.MAX_IMAGE_BATCH_BYTES // (1024 * 1024)
            raise errors.ValidationError(f"图片文件总大小不能超过{limit_mb}MB")
        return types

    def accept(
        self,
        principal: Principal,
        merchant_id: int | None,
        files: list[IncomingFile],
        remarks: str | None = None,
        allow_duplicates: bool = False,
    ) -> UploadManifest:
        self._require_uploader(principal)
        merchant = self._require_merchant(merchant_id)
        types = self._validate_batch(files, remarks)
        remarks = remarks or None

        written: list[str] = []
        upload_time = utcnow()
        try:
            with transaction(self.db):
                # 重名检查与插入在同一个事务里
                if not allow_duplicates:
                    duplicates = self.assets.existing_names(principal.id, merchant.id, (f.filename for f in files))
                    if duplicates:
                        raise errors.ConflictError("存在重复文件", duplicateFiles=duplicates)

                rows: list[FileAsset] = []
                for incoming, file_type in zip(files, types):
                    stored_name = generate_stored_name(incoming.filename)
                    path = self.storage.save_stream(stored_name, incoming.stream)
                    written.append(stored_name)
                    rows.append(
                        FileAsset(
                            ownerId=principal.id,
                            merchantId=merchant.id,
                            originalName=incoming.filename,
                            storedName=stored_name,
                            storedPath=str(path),
                            sizeBytes=incoming.size,
                            fileType=file_type.value,
                            mimeType=incoming.content_type,
                            remarks=remarks,
                            uploadTime=upload_time,
                        )
                    )
                self.assets.create_many(rows)
        except Exception:
            for stored_name in written:
                self.storage.delete(stored_name)
            raise

        logger.info("客户 %s 上传 %d 个文件到商家 %s", principal.id, len(rows), merchant.id)
        self.audit.log(
            principal.id,
            OperationCode.UPLOAD_FILES,
            f"上传{len(rows)}个文件到商家: {merchant.username} (ID: {merchant.id})",
        )
        return UploadManifest(
            files=[
                StoredFile(
                    id=row.id,
                    originalName=row.originalName,
                    storedName=row.storedName,
                    size=row.sizeBytes,
                    fileType=row.fileType,
                )
                for row in rows
            ],
            merchant=merchant.username,
            uploadTime=upload_time.isoformat(),
        )
