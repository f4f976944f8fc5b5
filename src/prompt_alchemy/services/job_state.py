"""
渲染任务状态机

JobSnapshot 是轮询器每次观察到的状态；reduce_job_state 是纯函数的
(当前状态, 观察结果) -> 新状态，不涉及网络和定时器。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from prompt_alchemy.models.render_job import JobState, RenderJob


@dataclass(frozen=True)
class JobSnapshot:
    """任务状态快照"""

    state: JobState
    result_urls: tuple[str, ...] = ()
    error_message: Optional[str] = None

    def __post_init__(self) -> None:
        if self.state == JobState.SUCCEEDED and not self.result_urls:
            raise ValueError("succeeded 快照必须包含结果URL")
        if self.state != JobState.SUCCEEDED and self.result_urls:
            raise ValueError("只有 succeeded 快照可以携带结果URL")
        if self.state == JobState.FAILED and not self.error_message:
            raise ValueError("failed 快照必须包含错误信息")
        if self.state != JobState.FAILED and self.error_message is not None:
            raise ValueError("只有 failed 快照可以携带错误信息")

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @classmethod
    def pending(cls) -> "JobSnapshot":
        return cls(JobState.PENDING)

    @classmethod
    def succeeded(cls, urls) -> "JobSnapshot":
        return cls(JobState.SUCCEEDED, result_urls=tuple(urls))

    @classmethod
    def failed(cls, message: str) -> "JobSnapshot":
        return cls(JobState.FAILED, error_message=message)


def snapshot_of(job: RenderJob) -> JobSnapshot:
    """从持久化的任务构造快照"""
    state = JobState.PENDING if job.state == JobState.RUNNING else job.state
    return JobSnapshot(
        state=state,
        result_urls=tuple(job.result_urls),
        error_message=job.error_message,
    )


def reduce_job_state(current: JobSnapshot, observed: JobSnapshot) -> JobSnapshot:
    """
    状态迁移

    - 终态不可再变（不会“复活”已结束的任务）
    - running 与 pending 合并为 pending
    - 其余情况采用观察到的状态
    """
    if current.is_terminal:
        return current
    if observed.state == JobState.RUNNING:
        return JobSnapshot.pending()
    return observed


def apply_snapshot(job: RenderJob, observed: JobSnapshot) -> RenderJob:
    """把观察结果合并进任务，未变化时返回原对象"""
    current = snapshot_of(job)
    new_state = reduce_job_state(current, observed)
    if new_state == current and job.state != JobState.RUNNING:
        return job

    return job.model_copy(
        update={
            "state": new_state.state,
            "result_urls": list(new_state.result_urls),
            "error_message": new_state.error_message,
            "timed_out": False if new_state.is_terminal else job.timed_out,
            "updated_at": datetime.now(),
        }
    )
