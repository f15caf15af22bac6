from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional
import os
import json


class Settings(BaseSettings):
    """应用配置（进程启动时构造一次，之后只读）"""

    # API 配置
    API_TITLE: str = "Photo Drop API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Customer uploads, merchant triage and batch downloads"

    # JWT 配置（令牌由外部签发，这里只负责校验）
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./database.db"

    # 上传目录：所有文件落在同一个本地目录
    UPLOAD_DIR: str = "./uploads"

    # 上传限制
    MAX_FILES_PER_UPLOAD: int = 20
    # 仅统计图片，压缩包不计入
    MAX_IMAGE_BATCH_BYTES: int = 50 * 1024 * 1024

    # 备注编辑限制
    MAX_REMARKS_LENGTH: int = 500
    MAX_REMARK_EDITS: int = 10

    # 分页上限
    MAX_PAGE_LIMIT: int = 100

    # 下载
    ZIP_COMPRESSION_LEVEL: int = 9
    DOWNLOAD_CHUNK_SIZE: int = 64 * 1024

    # CORS 配置
    # 支持通过环境变量 CORS_ORIGINS 覆盖：
    # - JSON 数组：["https://a.com","https://b.com"]
    # - 逗号分隔：https://a.com,https://b.com
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    CORS_ALLOW_ORIGIN_REGEX: Optional[str] = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if v is None:
            return v
        if isinstance(v, str):
            raw = v.strip()
            if not raw:
                return []
            if raw.startswith("["):
                try:
                    parsed = json.loads(raw)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in raw.split(",") if item.strip()]
        return v

    @field_validator("CORS_ALLOW_ORIGIN_REGEX", mode="before")
    @classmethod
    def _normalize_cors_regex(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            raw = v.strip()
            return raw or None
        return v

    @staticmethod
    def _default_env_file() -> str:
        env_file = os.getenv("ENV_FILE")
        if env_file:
            return env_file
        for candidate in (".env.sqlite", ".env"):
            if os.path.exists(candidate):
                return candidate
        return ".env"

    model_config = SettingsConfigDict(
        env_file=_default_env_file.__func__(),
        extra="ignore",
        frozen=True,
    )


@lru_cache
def get_settings() -> Settings:
    """配置依赖：全进程共享同一个只读实例"""
    return Settings()
