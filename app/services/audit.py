from __future__ import annotations

import logging
from typing import Callable

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import OperationCode, OperationLog


logger = logging.getLogger(__name__)


class AuditLogger:
    """
    操作日志写入器。

    - 使用独立会话写入，失败只记服务端日志，不影响主操作
    - 绑定了 BackgroundTasks 时在响应发出后再写；否则就地写入
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        background: BackgroundTasks | None = None,
    ):
        self._session_factory = session_factory
        self._background = background

    def log(self, user_id: int | None, operation: OperationCode | str, details: str = "") -> None:
        code = operation.value if isinstance(operation, OperationCode) else str(operation)
        if self._background is not None:
            self._background.add_task(self._write, user_id, code, details)
        else:
            self._write(user_id, code, details)

    def _write(self, user_id: int | None, operation: str, details: str) -> None:
        db = self._session_factory()
        try:
            db.add(OperationLog(userId=user_id, operation=operation, details=details))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("写入操作日志失败: user=%s op=%s: %s", user_id, operation, exc)
        finally:
            db.close()
