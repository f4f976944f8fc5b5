"""
Core 模块 - 核心配置和工具
"""
from .config import Settings, get_settings
from .logging import setup_logging, get_logger
from .exceptions import (
    RenderJobError,
    SubmissionError,
    ProtocolError,
    ResultMissingError,
    JobTimeoutError,
    StatusQueryError,
    JobInFlightError,
    PromptNotFoundError,
    PromptGenerationError,
    ReferenceNotReadyError,
)

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "RenderJobError",
    "SubmissionError",
    "ProtocolError",
    "ResultMissingError",
    "JobTimeoutError",
    "StatusQueryError",
    "JobInFlightError",
    "PromptNotFoundError",
    "PromptGenerationError",
    "ReferenceNotReadyError",
]
