"""
状态轮询器 - 定时查询任务状态直到终态或次数用尽
"""
import asyncio
from typing import AsyncIterator, Optional

import httpx

from prompt_alchemy.core import Settings, get_logger
from prompt_alchemy.core.exceptions import JobTimeoutError, ProtocolError, StatusQueryError
from prompt_alchemy.services.job_state import JobSnapshot
from prompt_alchemy.services.result_decoder import (
    interpret_task,
    read_state_field,
    unwrap_task_data,
)

logger = get_logger(__name__)

# 这些状态码视为暂时性问题，计入次数后继续轮询
RETRYABLE_STATUS_CODES = frozenset({404, 408, 425, 429})


class StatusPoller:
    """
    任务状态轮询器

    只产出状态快照，不修改持久化数据。
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self.status_url = f"{settings.kie_base_url.rstrip('/')}{settings.kie_status_path}"
        self.interval = settings.poll_interval_seconds
        self.max_attempts = settings.poll_max_attempts

    async def fetch_snapshot(self, job_id: str) -> JobSnapshot:
        """
        查询一次任务状态

        404、429、5xx 和网络错误都视为 pending。

        Raises:
            StatusQueryError: 其他非 2xx 状态码
            ProtocolError: 200 但响应不是 JSON
            ResultMissingError: 状态成功但没有结果URL
        """
        headers = {"Authorization": f"Bearer {self.settings.kie_api_key}"}
        try:
            response = await self.http_client.get(
                self.status_url,
                params={"taskId": job_id},
                headers=headers,
                timeout=self.settings.request_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning(f"查询任务 {job_id} 网络错误，稍后重试: {e}")
            return JobSnapshot.pending()

        if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
            logger.warning(f"任务 {job_id} 暂不可查询 ({response.status_code})，稍后重试")
            return JobSnapshot.pending()

        if not response.is_success:
            raise StatusQueryError(job_id, response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"任务 {job_id} 状态响应不是 JSON: {response.text[:500]}")
            raise ProtocolError("状态响应不是合法的 JSON", payload=response.text) from e

        task_data = unwrap_task_data(body)
        snapshot = interpret_task(job_id, task_data)
        if not snapshot.is_terminal:
            logger.debug(f"任务 {job_id} 状态: {read_state_field(task_data) or 'pending'}")
        return snapshot

    async def poll(
        self,
        job_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[JobSnapshot]:
        """
        轮询任务状态

        每次查询产出一个快照；产出终态后结束。
        上一次快照被消费后才会发起下一次查询。

        Raises:
            JobTimeoutError: 次数用尽时仍未完成
        """
        logger.info(f"开始轮询任务 {job_id}: 间隔 {self.interval}s, 最多 {self.max_attempts} 次")

        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"任务 {job_id} 的轮询已取消")
                return

            snapshot = await self.fetch_snapshot(job_id)
            yield snapshot

            if snapshot.is_terminal:
                logger.info(f"任务 {job_id} 结束: {snapshot.state.value}（第 {attempt} 次查询）")
                return

            if attempt < self.max_attempts:
                await asyncio.sleep(self.interval)

        raise JobTimeoutError(job_id, self.max_attempts)
