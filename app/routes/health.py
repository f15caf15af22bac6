# 后端健康检查端点
import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.deps import get_storage
from app.core.storage import LocalStorage

router = APIRouter()


def _check_database(db: Session) -> tuple[str, float]:
    start = time.time()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return f"unhealthy: {e}", 0
    return "healthy", round((time.time() - start) * 1000, 2)


@router.get("")
async def health_check(
    db: Session = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    """
    健康检查端点 - 用于负载均衡器/监控系统
    返回数据库连接与上传目录状态
    """
    start = time.time()
    db_status, db_latency_ms = _check_database(db)
    storage_status = "healthy" if storage.root.is_dir() else "missing"

    healthy = db_status == "healthy" and storage_status == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": time.time(),
        "checks": {
            "database": {"status": db_status, "latency_ms": db_latency_ms},
            "uploads": {"status": storage_status, "path": str(storage.root)},
        },
        "latency_ms": round((time.time() - start) * 1000, 2),
    }


@router.get("/ready")
async def readiness_check(db: Session = Depends(get_db)):
    """就绪检查：数据库可用才接收流量"""
    db_status, _ = _check_database(db)
    if db_status != "healthy":
        raise HTTPException(status_code=503, detail="Service not ready")
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """存活检查：只要进程还在运行就返回 200"""
    return {"alive": True}
