"""
API 依赖 - 从应用状态中取出服务
"""
from fastapi import Request

from prompt_alchemy.services.container import ServiceContainer
from prompt_alchemy.services.render_orchestrator import RenderOrchestrator


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_orchestrator(request: Request) -> RenderOrchestrator:
    return request.app.state.services.orchestrator
