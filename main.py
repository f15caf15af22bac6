import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.database import Base, engine
from app.core.errors import ServiceError
from app.core.storage import LocalStorage
from app import models  # noqa: F401  注册所有表
from app.routes import admin, files, health, merchant, uploads, user_profile


logger = logging.getLogger(__name__)

settings = get_settings()


def _run_startup() -> None:
    """应用启动时执行：创建表 + 创建上传目录"""
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        logger.exception("数据库初始化失败（无法创建表），请检查 DATABASE_URL 连接与权限: %s", exc)
        raise
    LocalStorage(settings.UPLOAD_DIR).ensure_root()


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    _run_startup()
    yield


# 创建 FastAPI 应用
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description=settings.API_DESCRIPTION,
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(ServiceError)
async def _service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(SQLAlchemyError)
async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    # 统一把数据库异常转换成 JSON 响应，避免未处理异常导致浏览器端出现 CORS 级别的 `Failed to fetch`
    logger.exception("数据库异常: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "数据库错误，请稍后重试"})


# CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_origin_regex=settings.CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


# 健康检查
@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "ok", "message": "Photo Drop Backend is running"}


# 包含路由
app.include_router(health.router, prefix="/api/health", tags=["Health"])
app.include_router(uploads.router, prefix="/api", tags=["Customer"])
app.include_router(merchant.router, prefix="/api/merchant", tags=["Merchant"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])
app.include_router(user_profile.router, prefix="/api/profile", tags=["Profile"])
app.include_router(files.router, prefix="/uploads", tags=["Files"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
