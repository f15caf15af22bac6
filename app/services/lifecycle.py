"""
文件生命周期：软删除 / 恢复、备注编辑、商家处理状态。

每个写操作都是一条带前置条件的 UPDATE，受影响行数为 0 时再读一次记录，
区分“不存在/无权限”（404）与“状态冲突”（409）。
"""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core import errors
from app.core.access import Principal, can_review_assets, owner_scope, recipient_scope
from app.core.config import Settings
from app.core.database import transaction
from app.models import AssetStatus, FileAsset, OperationCode, ProcessStatus, utcnow
from app.services.asset_store import AssetStore
from app.services.audit import AuditLogger


@dataclass(frozen=True)
class RemarksEditResult:
    editCount: int
    remainingEdits: int


class AssetLifecycle:
    def __init__(self, db: Session, settings: Settings, audit: AuditLogger):
        self.db = db
        self.settings = settings
        self.audit = audit
        self.assets = AssetStore(db)

    def _owned(self, principal: Principal, asset_id: int) -> FileAsset:
        asset = self.assets.get(asset_id, owner_scope(principal))
        if asset is None:
            raise errors.NotFoundError("文件不存在")
        return asset

    def _transition(
        self,
        principal: Principal,
        asset_id: int,
        *,
        source: AssetStatus,
        target: AssetStatus,
        conflict_message: str,
    ) -> FileAsset:
        with transaction(self.db):
            changed = self.assets.update(
                asset_id,
                {FileAsset.status: target.value},
                owner_scope(principal),
                FileAsset.status == source.value,
            )
            if not changed:
                self._owned(principal, asset_id)
                raise errors.ConflictError(conflict_message)
        return self._owned(principal, asset_id)

    def soft_delete(self, principal: Principal, asset_id: int) -> FileAsset:
        asset = self._transition(
            principal,
            asset_id,
            source=AssetStatus.ACTIVE,
            target=AssetStatus.DELETED,
            conflict_message="文件已经被删除",
        )
        self.audit.log(principal.id, OperationCode.DELETE_FILE, f"删除文件: {asset.originalName} (ID: {asset.id})")
        return asset

    def restore(self, principal: Principal, asset_id: int) -> FileAsset:
        asset = self._transition(
            principal,
            asset_id,
            source=AssetStatus.DELETED,
            target=AssetStatus.ACTIVE,
            conflict_message="文件未被删除，无需恢复",
        )
        self.audit.log(principal.id, OperationCode.RESTORE_FILE, f"恢复文件: {asset.originalName} (ID: {asset.id})")
        return asset

    def edit_remarks(self, principal: Principal, asset_id: int, remarks: str | None) -> RemarksEditResult:
        max_edits = self.settings.MAX_REMARK_EDITS
        # 长度先校验，计数器不受影响
        if remarks is not None and len(remarks) > self.settings.MAX_REMARKS_LENGTH:
            raise errors.ValidationError(f"备注长度不能超过{self.settings.MAX_REMARKS_LENGTH}字符")

        with transaction(self.db):
            changed = self.assets.update(
                asset_id,
                {
                    FileAsset.remarks: remarks or None,
                    FileAsset.editCount: FileAsset.editCount + 1,
                    FileAsset.lastEditTime: utcnow(),
                },
                owner_scope(principal),
                FileAsset.status == AssetStatus.ACTIVE.value,
                FileAsset.editCount < max_edits,
            )
            if not changed:
                asset = self._owned(principal, asset_id)
                if asset.status == AssetStatus.DELETED.value:
                    raise errors.ConflictError("已删除的文件无法编辑备注")
                raise errors.ConflictError(
                    f"备注编辑次数已达上限（{max_edits}次）",
                    editCount=asset.editCount,
                    remainingEdits=0,
                )

        asset = self._owned(principal, asset_id)
        self.audit.log(
            principal.id,
            OperationCode.EDIT_REMARKS,
            f"编辑文件备注: {asset.originalName} (ID: {asset.id}), 第{asset.editCount}次编辑",
        )
        return RemarksEditResult(editCount=asset.editCount, remainingEdits=max(max_edits - asset.editCount, 0))

    def set_process_status(self, principal: Principal, asset_id: int, process_status: str) -> FileAsset:
        """任意状态之间都可以互相切换，不强制 received → processing → shipped 的顺序"""
        if not can_review_assets(principal):
            raise errors.AuthorizationError("权限不足")
        try:
            value = ProcessStatus(process_status)
        except ValueError:
            raise errors.ValidationError("无效的状态值")

        active_for_me = (recipient_scope(principal), FileAsset.status == AssetStatus.ACTIVE.value)
        with transaction(self.db):
            changed = self.assets.update(asset_id, {FileAsset.processStatus: value.value}, *active_for_me)
            if not changed:
                raise errors.NotFoundError("照片不存在或无权限访问")

        asset = self.assets.get(asset_id, *active_for_me)
        self.audit.log(
            principal.id,
            OperationCode.UPDATE_PHOTO_STATUS,
            f"更新照片状态: {asset.originalName} -> {value.value}",
        )
        return asset
