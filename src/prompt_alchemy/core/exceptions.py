"""
渲染任务错误分类

所有错误都按提示词记录捕获，一个任务失败不会影响其他任务。
"""
from typing import Any, Optional


class RenderJobError(Exception):
    """渲染任务错误基类"""


class SubmissionError(RenderJobError):
    """创建任务失败（网络 / HTTP / 鉴权），不自动重试"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProtocolError(RenderJobError):
    """响应结构中找不到可识别的任务ID或结果字段"""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.payload = payload


class ResultMissingError(RenderJobError):
    """状态为成功，但解析不出任何结果URL"""

    def __init__(self, job_id: str, payload: Any = None):
        super().__init__(f"任务 {job_id} 已完成，但响应中没有结果URL")
        self.job_id = job_id
        self.payload = payload


class JobTimeoutError(RenderJobError, TimeoutError):
    """轮询次数用尽时任务仍在处理中；服务端可能稍后完成"""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(f"任务 {job_id} 在 {attempts} 次查询后仍未完成")
        self.job_id = job_id
        self.attempts = attempts


class StatusQueryError(RenderJobError):
    """状态查询返回了不可重试的 HTTP 错误"""

    def __init__(self, job_id: str, status_code: int, message: str = ""):
        super().__init__(message or f"查询任务 {job_id} 状态失败 ({status_code})")
        self.job_id = job_id
        self.status_code = status_code


class JobInFlightError(RenderJobError):
    """同一提示词已有任务在轮询中，拒绝重复提交"""

    def __init__(self, prompt_id: str):
        super().__init__(f"提示词 {prompt_id} 已有渲染任务进行中")
        self.prompt_id = prompt_id


class PromptNotFoundError(RenderJobError):
    """提示词记录不存在（可能已被删除或淘汰）"""

    def __init__(self, prompt_id: str):
        super().__init__(f"提示词记录不存在: {prompt_id}")
        self.prompt_id = prompt_id


class PromptGenerationError(Exception):
    """提示词生成服务返回了无法使用的结果"""


class ReferenceNotReadyError(Exception):
    """参考图上传图床失败"""
