from .user import User, Role, UserStatus, BOOTSTRAP_ADMIN_ID, utcnow
from .file_asset import FileAsset, FileType, AssetStatus, ProcessStatus
from .download_record import DownloadRecord, DownloadType, DownloadStatus
from .operation_log import OperationLog, OperationCode

__all__ = [
    "User",
    "Role",
    "UserStatus",
    "BOOTSTRAP_ADMIN_ID",
    "utcnow",
    "FileAsset",
    "FileType",
    "AssetStatus",
    "ProcessStatus",
    # 下载台账
    "DownloadRecord",
    "DownloadType",
    "DownloadStatus",
    # 审计日志
    "OperationLog",
    "OperationCode",
]
