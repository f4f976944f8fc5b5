"""
数据库连接管理
"""
import os

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_db_engine(database_url: str):
    """创建数据库引擎；内存 SQLite 共享同一个连接"""
    if database_url in _MEMORY_URLS:
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    connect_args = {}
    if database_url.startswith("sqlite:///"):
        # 文件库所在目录不存在时 SQLite 无法建库
        db_dir = os.path.dirname(database_url[len("sqlite:///"):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=False, connect_args=connect_args)


def init_db(engine) -> None:
    """确保表存在"""
    from prompt_alchemy.models.history_document import HistoryDocument  # noqa: F401

    SQLModel.metadata.create_all(engine)


__all__ = ["create_db_engine", "init_db"]
