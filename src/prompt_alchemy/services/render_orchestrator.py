"""
渲染生命周期编排

把提交、轮询、恢复和状态通知串起来：
- 每条提示词同一时间最多一个轮询
- 每次状态迁移先写入注册表，再通知监听者
- 启动时对未完成的任务重新挂上轮询，不重新提交
"""
import asyncio
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, Optional

from prompt_alchemy.core import get_logger
from prompt_alchemy.core.exceptions import (
    JobInFlightError,
    JobTimeoutError,
    PromptNotFoundError,
    ProtocolError,
    RenderJobError,
    ResultMissingError,
    StatusQueryError,
    SubmissionError,
)
from prompt_alchemy.models.prompt_session import PromptRecord, PromptSession
from prompt_alchemy.models.render_job import RenderConfig, RenderJob, RenderRequest
from prompt_alchemy.services.job_client import RemoteJobClient, extract_job_id
from prompt_alchemy.services.job_registry import JobRegistry
from prompt_alchemy.services.job_state import JobSnapshot
from prompt_alchemy.services.result_decoder import interpret_task, unwrap_task_data
from prompt_alchemy.services.status_poller import StatusPoller

logger = get_logger(__name__)

GENERIC_FAILURE_MESSAGE = "渲染失败，请稍后重试"


@dataclass(frozen=True)
class RenderEvent:
    """提示词渲染状态变化事件"""

    type: str  # submitted / updated / timeout / submit_failed / deleted
    prompt_id: str
    job: Optional[RenderJob] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "prompt_id": self.prompt_id,
            "job": self.job.model_dump(mode="json") if self.job else None,
            "message": self.message,
        }


RenderListener = Callable[[RenderEvent], None]


def _job_fingerprint(job: Optional[RenderJob]) -> tuple:
    if job is None:
        return ()
    return (job.id, job.state, tuple(job.result_urls), job.error_message, job.timed_out)


def _failure_message(error: Exception) -> str:
    if isinstance(error, ResultMissingError):
        return "渲染已完成，但没有获取到结果图片"
    if isinstance(error, StatusQueryError):
        return f"查询渲染状态失败 ({error.status_code})"
    return GENERIC_FAILURE_MESSAGE


class RenderOrchestrator:
    """渲染任务生命周期编排器"""

    def __init__(
        self,
        registry: JobRegistry,
        client: RemoteJobClient,
        poller: StatusPoller,
    ):
        self.registry = registry
        self.client = client
        self.poller = poller
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._submitting: set[str] = set()
        self._listeners: list[RenderListener] = []

    # ============ 监听 ============

    def add_listener(self, listener: RenderListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: RenderListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: RenderEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.error(f"渲染事件监听器异常: {event.type} {event.prompt_id}", exc_info=True)

    # ============ 状态查询 ============

    def is_polling(self, prompt_id: str) -> bool:
        task = self._tasks.get(prompt_id)
        return task is not None and not task.done()

    def active_prompt_ids(self) -> list[str]:
        return [prompt_id for prompt_id in self._tasks if self.is_polling(prompt_id)]

    def _is_busy(self, prompt_id: str) -> bool:
        return prompt_id in self._submitting or self.is_polling(prompt_id)

    # ============ 提交 ============

    async def submit(
        self,
        prompt_id: str,
        config: Optional[RenderConfig] = None,
        reference_urls: Optional[list[str]] = None,
    ) -> RenderJob:
        """
        为提示词提交渲染任务并开始轮询

        Args:
            prompt_id: 提示词记录ID
            config: 渲染参数
            reference_urls: 参考图，默认使用提示词自己的参考图

        Raises:
            PromptNotFoundError: 提示词不存在
            JobInFlightError: 已有任务在提交或轮询中
            SubmissionError / ProtocolError: 创建任务失败
        """
        # 在第一个挂起点之前占位，避免并发提交竞争
        if self._is_busy(prompt_id):
            raise JobInFlightError(prompt_id)

        record = self.registry.find_prompt(prompt_id)
        if record is None:
            raise PromptNotFoundError(prompt_id)

        if reference_urls is None:
            reference_urls = [record.reference_url] if record.reference_url else []
        request = RenderRequest(
            prompt=record.text,
            reference_urls=reference_urls,
            config=config or RenderConfig(),
        )

        self._submitting.add(prompt_id)
        try:
            try:
                job_id = await self.client.submit(request.prompt, request.reference_urls, request.config)
            except (SubmissionError, ProtocolError) as e:
                message = getattr(e, "message", str(e))
                self.registry.record_submission_error(prompt_id, message)
                self._notify(RenderEvent("submit_failed", prompt_id, message=message))
                raise

            job = self.registry.record_submission(prompt_id, job_id, request)
            if job is None:
                # 提交期间记录被删除：任务已在远端创建，但不再跟踪
                raise PromptNotFoundError(prompt_id)

            self._notify(RenderEvent("submitted", prompt_id, job=job))
            self._attach(prompt_id, job)
            return job
        finally:
            self._submitting.discard(prompt_id)

    async def submit_many(
        self,
        prompt_ids: list[str],
        config: Optional[RenderConfig] = None,
    ) -> dict[str, Any]:
        """
        批量提交，所有请求并发发出，互不影响

        重复的提示词ID只提交一次。

        Returns:
            {prompt_id: RenderJob 或异常}
        """
        unique_ids = list(dict.fromkeys(prompt_ids))
        results = await asyncio.gather(
            *(self.submit(prompt_id, config) for prompt_id in unique_ids),
            return_exceptions=True,
        )
        outcome = dict(zip(unique_ids, results))
        failed = [pid for pid, result in outcome.items() if isinstance(result, BaseException)]
        logger.info(f"批量提交 {len(unique_ids)} 条，失败 {len(failed)} 条")
        return outcome

    # ============ 轮询 ============

    def _attach(self, prompt_id: str, job: RenderJob) -> asyncio.Task:
        cancel_event = asyncio.Event()
        self._cancel_events[prompt_id] = cancel_event
        task = asyncio.create_task(
            self._run_poll(prompt_id, job, cancel_event),
            name=f"poll-{prompt_id}",
        )
        self._tasks[prompt_id] = task
        return task

    async def _run_poll(self, prompt_id: str, job: RenderJob, cancel_event: asyncio.Event) -> None:
        job_id = job.id
        last = _job_fingerprint(job)
        try:
            async with aclosing(self.poller.poll(job_id, cancel_event)) as snapshots:
                async for snapshot in snapshots:
                    if cancel_event.is_set():
                        break
                    updated = self._apply(prompt_id, job_id, snapshot, last)
                    if updated is None:
                        # 记录已删除或任务已被替换
                        cancel_event.set()
                        break
                    last = _job_fingerprint(updated)
                    if updated.is_terminal:
                        break
        except JobTimeoutError as e:
            logger.warning(f"{e}，提示词 {prompt_id} 保持处理中状态")
            timed_out_job = self.registry.record_timeout(prompt_id, job_id)
            if timed_out_job is not None:
                self._notify(
                    RenderEvent("timeout", prompt_id, job=timed_out_job, message="仍在处理中，请稍后查看")
                )
        except asyncio.CancelledError:
            logger.info(f"提示词 {prompt_id} 的轮询任务被取消")
            raise
        except Exception as e:
            if isinstance(e, (ProtocolError, ResultMissingError)):
                logger.error(f"任务 {job_id} 响应无法解析: {e}; payload={getattr(e, 'payload', None)}")
            else:
                logger.error(f"任务 {job_id} 轮询失败: {e}", exc_info=not isinstance(e, RenderJobError))
            if not cancel_event.is_set():
                self._apply(prompt_id, job_id, JobSnapshot.failed(_failure_message(e)), last)
        finally:
            if self._tasks.get(prompt_id) is asyncio.current_task():
                self._tasks.pop(prompt_id, None)
                self._cancel_events.pop(prompt_id, None)

    def _apply(
        self,
        prompt_id: str,
        job_id: str,
        snapshot: JobSnapshot,
        last: tuple,
    ) -> Optional[RenderJob]:
        """先写注册表，再通知；状态未变化时不通知"""
        updated = self.registry.record_transition(prompt_id, job_id, snapshot)
        if updated is not None and _job_fingerprint(updated) != last:
            self._notify(RenderEvent("updated", prompt_id, job=updated))
        return updated

    async def resume_all(self) -> list[str]:
        """
        对所有未完成的任务重新挂上轮询（不重新提交）

        Returns:
            本次挂上轮询的提示词ID
        """
        attached = []
        for prompt_id, job_id in self.registry.all_unresolved_jobs():
            if self._is_busy(prompt_id):
                continue
            job = self.registry.record_timeout(prompt_id, job_id, timed_out=False)
            if job is None:
                record = self.registry.find_prompt(prompt_id)
                job = record.job if record else None
            if job is None or job.id != job_id:
                continue
            self._attach(prompt_id, job)
            attached.append(prompt_id)
        if attached:
            logger.info(f"恢复 {len(attached)} 个未完成的渲染任务")
        return attached

    async def refresh(self, prompt_id: str) -> Optional[RenderJob]:
        """
        立即查询一次状态（不占用轮询名额）

        轮询中或已是终态时直接返回当前记录。
        """
        record = self.registry.find_prompt(prompt_id)
        if record is None:
            raise PromptNotFoundError(prompt_id)
        job = record.job
        if job is None or job.is_terminal or self.is_polling(prompt_id):
            return job

        try:
            snapshot = await self.poller.fetch_snapshot(job.id)
        except (ResultMissingError, ProtocolError, StatusQueryError) as e:
            logger.error(f"手动刷新任务 {job.id} 失败: {e}")
            snapshot = JobSnapshot.failed(_failure_message(e))
        updated = self._apply(prompt_id, job.id, snapshot, _job_fingerprint(job))
        return updated or job

    def apply_callback(self, payload: Any) -> Optional[RenderJob]:
        """
        处理渲染服务推送的完成回调

        与轮询共用解析逻辑；未知任务、非终态推送直接忽略。
        """
        job_id = extract_job_id(payload)
        if not job_id:
            logger.warning(f"回调中没有任务ID: {payload}")
            return None

        record = self.registry.find_prompt_by_job(job_id)
        if record is None or record.job is None:
            logger.info(f"回调任务 {job_id} 没有对应的提示词，忽略")
            return None

        task_data = dict(unwrap_task_data(payload))
        if "state" not in task_data and isinstance(payload, dict) and payload.get("status"):
            task_data["state"] = payload["status"]

        try:
            snapshot = interpret_task(job_id, task_data)
        except ResultMissingError as e:
            logger.error(f"回调任务 {job_id} 没有结果URL: {e.payload}")
            snapshot = JobSnapshot.failed(_failure_message(e))

        if not snapshot.is_terminal:
            return record.job
        return self._apply(record.id, job_id, snapshot, _job_fingerprint(record.job))

    # ============ 取消 / 删除 ============

    def cancel(self, prompt_id: str) -> bool:
        """设置取消标记，轮询在下次查询前退出"""
        cancel_event = self._cancel_events.get(prompt_id)
        if cancel_event is None:
            return False
        cancel_event.set()
        return True

    def delete_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        self.cancel(prompt_id)
        record = self.registry.delete_prompt(prompt_id)
        if record is not None:
            self._notify(RenderEvent("deleted", prompt_id))
        return record

    def delete_session(self, session_id: str) -> Optional[PromptSession]:
        prompt_session = self.registry.delete_session(session_id)
        if prompt_session is not None:
            for record in prompt_session.prompts:
                self.cancel(record.id)
                self._notify(RenderEvent("deleted", record.id))
        return prompt_session

    def clear_history(self) -> None:
        removed = [record.id for prompt_session in self.registry.snapshot() for record in prompt_session.prompts]
        for prompt_id in removed:
            self.cancel(prompt_id)
        self.registry.clear()
        for prompt_id in removed:
            self._notify(RenderEvent("deleted", prompt_id))

    # ============ 生命周期 ============

    async def join(self, prompt_id: str) -> None:
        """等待提示词当前的轮询结束"""
        task = self._tasks.get(prompt_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def join_all(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """停止所有轮询；任务仍是 pending，下次启动时自动恢复"""
        tasks = list(self._tasks.values())
        for cancel_event in self._cancel_events.values():
            cancel_event.set()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._cancel_events.clear()
