"""业务异常：服务层抛出，由 main.py 中的异常处理器统一转换成 JSON 响应。"""
from typing import Any


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_content(self) -> dict[str, Any]:
        return {"detail": self.message, **self.extra}


class ValidationError(ServiceError):
    """字段缺失/格式错误/批量超限，发生在任何写入之前"""

    status_code = 400


class AuthorizationError(ServiceError):
    """角色不符、归属不符、账户或商家被禁用"""

    status_code = 403


class NotFoundError(ServiceError):
    """不存在或对当前用户不可见，两者统一返回 404"""

    status_code = 404


class ConflictError(ServiceError):
    """重复文件名、编辑次数已满、重复删除/恢复"""

    status_code = 409
