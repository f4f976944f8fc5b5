"""
渲染任务 API
"""
import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from prompt_alchemy.api.deps import get_orchestrator
from prompt_alchemy.core import get_logger
from prompt_alchemy.core.exceptions import (
    JobInFlightError,
    PromptNotFoundError,
    ProtocolError,
    SubmissionError,
)
from prompt_alchemy.models.prompt_session import PromptRecord
from prompt_alchemy.models.render_job import RenderConfig
from prompt_alchemy.services.render_orchestrator import RenderEvent, RenderOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/renders", tags=["renders"])

SSE_HEARTBEAT_SECONDS = 15.0
TIMEOUT_NOTICE = "仍在处理中，请稍后查看"


class SubmitRenderRequest(RenderConfig):
    """渲染请求；reference_urls 为空时使用提示词自带的参考图"""
    reference_urls: Optional[list[str]] = None

    def to_config(self) -> RenderConfig:
        return RenderConfig(**self.model_dump(exclude={"reference_urls"}))


class BulkRenderRequest(RenderConfig):
    """批量渲染请求"""
    prompt_ids: list[str] = Field(min_length=1)

    def to_config(self) -> RenderConfig:
        return RenderConfig(**self.model_dump(exclude={"prompt_ids"}))


def _sse_event(data: dict) -> str:
    """格式化 SSE 事件。"""
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def _render_to_response(record: PromptRecord, orchestrator: RenderOrchestrator) -> dict:
    """将提示词的渲染状态转换为响应字典"""
    job = record.job
    notice = None
    if record.submit_error:
        notice = record.submit_error
    if job is not None:
        if job.error_message:
            notice = job.error_message
        elif job.timed_out:
            notice = TIMEOUT_NOTICE
    return {
        "prompt_id": record.id,
        "polling": orchestrator.is_polling(record.id),
        "job": job.model_dump(mode="json") if job else None,
        "submit_error": record.submit_error,
        "notice": notice,
    }


def _submission_http_error(e: Exception) -> HTTPException:
    if isinstance(e, PromptNotFoundError):
        return HTTPException(status_code=404, detail="提示词不存在")
    if isinstance(e, JobInFlightError):
        return HTTPException(status_code=409, detail="该提示词已有渲染任务进行中")
    if isinstance(e, SubmissionError):
        return HTTPException(status_code=502, detail=e.message)
    if isinstance(e, ProtocolError):
        return HTTPException(status_code=502, detail="渲染服务响应异常，请稍后重试")
    logger.error(f"提交渲染时发生未知错误: {e!r}")
    return HTTPException(status_code=500, detail="提交渲染失败")


async def render_event_stream(
    orchestrator: RenderOrchestrator,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat: float = SSE_HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    """
    渲染状态变化的 SSE 帧

    先发送 start 帧（当前轮询中的提示词），之后每个事件一帧，
    空闲时发送心跳。流关闭时注销监听器。
    """
    queue: asyncio.Queue[RenderEvent] = asyncio.Queue()
    orchestrator.add_listener(queue.put_nowait)
    try:
        yield _sse_event({"type": "start", "active": orchestrator.active_prompt_ids()})
        while not await is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield ": ping\n\n"
                continue
            yield _sse_event(event.to_dict())
    finally:
        orchestrator.remove_listener(queue.put_nowait)


@router.get("/events")
async def render_events(request: Request, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """渲染状态变化（SSE）"""
    return StreamingResponse(
        render_event_stream(orchestrator, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/bulk")
async def submit_bulk(
    request: BulkRenderRequest,
    orchestrator: RenderOrchestrator = Depends(get_orchestrator),
):
    """批量提交渲染，单条失败不影响其他"""
    outcome = await orchestrator.submit_many(request.prompt_ids, request.to_config())

    items = []
    for prompt_id, result in outcome.items():
        if isinstance(result, BaseException):
            error = _submission_http_error(result)
            items.append({"prompt_id": prompt_id, "ok": False, "status_code": error.status_code, "error": error.detail})
        else:
            items.append({"prompt_id": prompt_id, "ok": True, "job": result.model_dump(mode="json")})
    return {"items": items, "total": len(items)}


@router.post("/callback")
async def render_callback(request: Request, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """渲染服务完成回调；始终返回 200，避免对方重复推送"""
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("回调请求体不是 JSON")
        return {"success": True}

    job = orchestrator.apply_callback(payload)
    return {"success": True, "state": job.state.value if job else None}


@router.post("/{prompt_id}")
async def submit_render(
    prompt_id: str,
    request: Optional[SubmitRenderRequest] = None,
    orchestrator: RenderOrchestrator = Depends(get_orchestrator),
):
    """提交渲染（失败后重试、重新渲染都走这里）"""
    request = request or SubmitRenderRequest()
    try:
        job = await orchestrator.submit(prompt_id, request.to_config(), request.reference_urls)
    except (PromptNotFoundError, JobInFlightError, SubmissionError, ProtocolError) as e:
        raise _submission_http_error(e)

    return {"prompt_id": prompt_id, "polling": orchestrator.is_polling(prompt_id), "job": job.model_dump(mode="json")}


@router.get("/{prompt_id}")
async def get_render(prompt_id: str, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """获取渲染状态"""
    record = orchestrator.registry.find_prompt(prompt_id)
    if not record:
        raise HTTPException(status_code=404, detail="提示词不存在")
    return _render_to_response(record, orchestrator)


@router.post("/{prompt_id}/refresh")
async def refresh_render(prompt_id: str, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """立即查询一次远程状态"""
    try:
        await orchestrator.refresh(prompt_id)
    except PromptNotFoundError:
        raise HTTPException(status_code=404, detail="提示词不存在")
    record = orchestrator.registry.find_prompt(prompt_id)
    if not record:
        raise HTTPException(status_code=404, detail="提示词不存在")
    return _render_to_response(record, orchestrator)
