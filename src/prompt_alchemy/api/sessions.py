"""
会话历史 API
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from prompt_alchemy.api.deps import get_container, get_orchestrator
from prompt_alchemy.core import get_logger
from prompt_alchemy.core.exceptions import PromptGenerationError
from prompt_alchemy.models.prompt_session import GenerationMode, PromptRecord, PromptSession
from prompt_alchemy.services.container import ServiceContainer
from prompt_alchemy.services.render_orchestrator import RenderOrchestrator

logger = get_logger(__name__)

router = APIRouter(tags=["sessions"])


class PromptInput(BaseModel):
    """已生成的提示词"""
    text: str = Field(min_length=1)
    reference_url: Optional[str] = None


class CreateSessionRequest(BaseModel):
    """创建会话请求：直接提供提示词，或 generate=true 调用模型生成"""
    mode: GenerationMode = GenerationMode.MATCH_STYLE
    style_references: list[str] = Field(default_factory=list)
    subject_references: list[str] = Field(default_factory=list)
    prompts: list[PromptInput] = Field(default_factory=list)
    generate: bool = False
    count: int = Field(default=3, ge=1, le=10, description="每张参考图生成的提示词数量")
    custom_text: Optional[str] = None


def session_to_response(prompt_session: PromptSession, orchestrator: RenderOrchestrator) -> dict:
    """将 PromptSession 转换为响应字典"""
    data = prompt_session.model_dump(mode="json")
    for prompt in data["prompts"]:
        prompt["polling"] = orchestrator.is_polling(prompt["id"])
    return data


@router.post("/sessions")
async def create_session(
    request: CreateSessionRequest,
    services: ServiceContainer = Depends(get_container),
):
    """创建一次生成批次"""
    if request.generate:
        try:
            generated = await services.prompt_service.generate(
                style_urls=request.style_references,
                subject_urls=request.subject_references,
                count=request.count,
                mode=request.mode,
                custom_text=request.custom_text,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PromptGenerationError as e:
            logger.error(f"提示词生成失败: {e}")
            raise HTTPException(status_code=502, detail="提示词生成失败，请减少图片数量或稍后重试")
        records = [PromptRecord(text=p.text, reference_url=p.reference_url) for p in generated]
    else:
        if not request.prompts:
            raise HTTPException(status_code=400, detail="提示词不能为空")
        records = [PromptRecord(text=p.text.strip(), reference_url=p.reference_url) for p in request.prompts]

    prompt_session = services.registry.add_session(
        PromptSession(
            mode=request.mode,
            style_references=request.style_references,
            subject_references=request.subject_references,
            prompts=records,
        )
    )
    return session_to_response(prompt_session, services.orchestrator)


@router.get("/sessions")
async def list_sessions(services: ServiceContainer = Depends(get_container)):
    """获取历史会话（最新在前）"""
    sessions = services.registry.snapshot()
    return {
        "items": [session_to_response(s, services.orchestrator) for s in sessions],
        "total": len(sessions),
    }


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, services: ServiceContainer = Depends(get_container)):
    """获取会话详情"""
    prompt_session = services.registry.get_session(session_id)
    if not prompt_session:
        raise HTTPException(status_code=404, detail="会话不存在")
    return session_to_response(prompt_session, services.orchestrator)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """删除会话（进行中的轮询会在下次查询前停止）"""
    if orchestrator.delete_session(session_id) is None:
        raise HTTPException(status_code=404, detail="会话不存在")
    return {"message": "删除成功"}


@router.delete("/sessions")
async def clear_sessions(orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """清空历史"""
    orchestrator.clear_history()
    return {"message": "历史已清空"}


@router.delete("/prompts/{prompt_id}")
async def delete_prompt(prompt_id: str, orchestrator: RenderOrchestrator = Depends(get_orchestrator)):
    """删除单条提示词"""
    if orchestrator.delete_prompt(prompt_id) is None:
        raise HTTPException(status_code=404, detail="提示词不存在")
    return {"message": "删除成功"}
