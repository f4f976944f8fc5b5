"""
数据模型模块
"""
from .render_job import JobState, RenderConfig, RenderRequest, RenderJob
from .prompt_session import GenerationMode, PromptRecord, PromptSession
from .history_document import HistoryDocument

__all__ = [
    "JobState",
    "RenderConfig",
    "RenderRequest",
    "RenderJob",
    "GenerationMode",
    "PromptRecord",
    "PromptSession",
    "HistoryDocument",
]
