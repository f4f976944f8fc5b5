"""
渲染任务数据模型
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class JobState(str, Enum):
    """任务生命周期状态"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


class RenderConfig(BaseModel):
    """渲染参数"""
    aspect_ratio: str = Field(default="1:1", description="画面比例，如 1:1 / 9:16 / 16:9")
    resolution: Literal["1K", "2K", "4K"] = Field(default="1K", description="分辨率档位")
    content_mode: Literal["standard", "unrestricted"] = Field(
        default="standard",
        description="内容模式，决定使用哪个渲染后端",
    )
    output_format: Literal["png", "jpeg"] = "png"


class RenderRequest(BaseModel):
    """创建任务时的请求参数，提交后不可变"""

    model_config = {"frozen": True}

    prompt: str
    reference_urls: list[str] = Field(default_factory=list)
    config: RenderConfig = Field(default_factory=RenderConfig)


class RenderJob(BaseModel):
    """
    一次远程异步渲染任务

    result_urls 只在 succeeded 时存在，error_message 只在 failed 时存在。
    """
    id: str = Field(description="远程服务分配的任务ID")
    request: RenderRequest
    state: JobState = JobState.PENDING
    result_urls: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    timed_out: bool = Field(default=False, description="轮询次数用尽时仍未完成")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_terminal_fields(self) -> "RenderJob":
        if self.result_urls and self.state != JobState.SUCCEEDED:
            raise ValueError("result_urls 只能出现在 succeeded 状态")
        if self.error_message is not None and self.state != JobState.FAILED:
            raise ValueError("error_message 只能出现在 failed 状态")
        if self.state == JobState.SUCCEEDED and not self.result_urls:
            raise ValueError("succeeded 状态必须包含结果URL")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
