"""
提示词会话（一次生成批次）数据模型
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from prompt_alchemy.models.render_job import RenderJob


def _new_id() -> str:
    return uuid.uuid4().hex


class GenerationMode(str, Enum):
    """提示词生成模式"""
    MATCH_STYLE = "MATCH_STYLE"
    RANDOM_CREATIVE = "RANDOM_CREATIVE"
    CUSTOM_SCENE = "CUSTOM_SCENE"
    CHARACTER_SHEET = "CHARACTER_SHEET"
    NSFC = "NSFC"


class PromptRecord(BaseModel):
    """一条生成的提示词，最多关联一个渲染任务（重新渲染会替换）"""
    id: str = Field(default_factory=_new_id)
    text: str
    reference_url: Optional[str] = Field(default=None, description="产生该提示词的参考图")
    created_at: datetime = Field(default_factory=datetime.now)

    job: Optional[RenderJob] = None
    submit_error: Optional[str] = Field(default=None, description="最近一次提交失败的原因")

    @property
    def is_unresolved(self) -> bool:
        """有任务ID但没有终态，重启后视为仍在进行"""
        return self.job is not None and bool(self.job.id) and not self.job.is_terminal


class PromptSession(BaseModel):
    """一次生成批次，包含多条提示词及其参考图"""
    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=datetime.now)
    mode: GenerationMode = GenerationMode.MATCH_STYLE
    style_references: list[str] = Field(default_factory=list)
    subject_references: list[str] = Field(default_factory=list)
    prompts: list[PromptRecord] = Field(default_factory=list)
