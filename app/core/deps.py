"""服务对象的依赖注入：请求会话、只读配置与独立会话工厂在这里组装。"""
from typing import Callable

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import get_db, get_session_factory
from app.core.storage import LocalStorage
from app.services.archive import ArchiveBuilder
from app.services.audit import AuditLogger
from app.services.ingestion import UploadService
from app.services.ledger import DownloadLedger
from app.services.lifecycle import AssetLifecycle
from app.services.listing import AssetListing
from app.services.user_admin import UserAdminService


def get_storage(settings: Settings = Depends(get_settings)) -> LocalStorage:
    return LocalStorage(settings.UPLOAD_DIR)


def get_audit_logger(
    background: BackgroundTasks,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> AuditLogger:
    return AuditLogger(session_factory, background)


def get_upload_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage),
    audit: AuditLogger = Depends(get_audit_logger),
) -> UploadService:
    return UploadService(db, settings, storage, audit)


def get_lifecycle(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AssetLifecycle:
    return AssetLifecycle(db, settings, audit)


def get_listing(db: Session = Depends(get_db)) -> AssetListing:
    return AssetListing(db)


def get_user_admin(
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
) -> UserAdminService:
    return UserAdminService(db, audit)


def get_archive_builder(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    storage: LocalStorage = Depends(get_storage),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> ArchiveBuilder:
    # 下载结束时请求会话已经关闭，台账与日志都走独立会话、就地写入
    return ArchiveBuilder(
        db,
        settings,
        storage,
        DownloadLedger(session_factory),
        AuditLogger(session_factory),
    )
