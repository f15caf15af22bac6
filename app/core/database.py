from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from app.core.config import get_settings


def create_db_engine(database_url: str) -> Engine:
    _url = make_url(database_url)
    _engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}

    # SQLite 本地开发：允许跨线程使用连接（流式下载在线程池里迭代）
    if _url.drivername.startswith("sqlite"):
        _engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        _engine_kwargs.update(
            {
                "pool_size": 10,
                "max_overflow": 20,
                "connect_args": {"charset": "utf8mb4", "connect_timeout": 5},
            }
        )

    return create_engine(database_url, **_engine_kwargs)


engine = create_db_engine(get_settings().DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """数据库会话依赖注入"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """独立会话工厂：审计日志与下载台账用它写入，不与请求事务共享"""
    return SessionLocal


@contextmanager
def transaction(db: Session):
    # SQLAlchemy 2.x 默认 autobegin：之前的读取与块内写入落在同一个事务里，
    # 块正常结束才提交，任何异常整体回滚。
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
