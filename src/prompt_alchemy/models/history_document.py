"""
历史文档表 - 整份会话列表作为一个 JSON 文档存储
"""
from sqlmodel import Field, SQLModel


class HistoryDocument(SQLModel, table=True):
    """持久化的历史文档"""

    __tablename__ = "history_documents"

    key: str = Field(primary_key=True, max_length=64, description="文档键")
    payload: str = Field(default="[]", description="会话列表 JSON")
