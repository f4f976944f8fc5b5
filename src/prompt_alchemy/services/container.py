"""
服务装配 - 用同一个 Settings 构建全部服务
"""
from dataclasses import dataclass, field
from typing import Optional

import httpx

from prompt_alchemy.core import Settings, get_logger
from prompt_alchemy.core.database import create_db_engine, init_db
from prompt_alchemy.services.image_host_service import ImageHostService
from prompt_alchemy.services.job_client import RemoteJobClient
from prompt_alchemy.services.job_registry import JobRegistry
from prompt_alchemy.services.llm_service import LLMService
from prompt_alchemy.services.prompt_service import PromptGenerationService
from prompt_alchemy.services.render_orchestrator import RenderOrchestrator
from prompt_alchemy.services.status_poller import StatusPoller

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """进程内共享的服务实例"""

    settings: Settings
    http_client: httpx.AsyncClient
    registry: JobRegistry
    orchestrator: RenderOrchestrator
    image_host: ImageHostService
    _prompt_service: Optional[PromptGenerationService] = field(default=None, repr=False)

    @property
    def prompt_service(self) -> PromptGenerationService:
        # 延迟创建，未配置模型时不影响渲染相关功能
        if self._prompt_service is None:
            self._prompt_service = PromptGenerationService(LLMService(self.settings))
        return self._prompt_service

    async def aclose(self) -> None:
        await self.orchestrator.shutdown()
        await self.http_client.aclose()


def build_container(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    prompt_service: Optional[PromptGenerationService] = None,
) -> ServiceContainer:
    """
    构建服务

    Args:
        settings: 配置
        transport: 自定义 HTTP 传输（测试时替换远程服务）
        prompt_service: 自定义提示词生成服务
    """
    engine = create_db_engine(settings.database_url)
    init_db(engine)

    http_client = httpx.AsyncClient(transport=transport, timeout=settings.request_timeout_seconds)
    registry = JobRegistry(engine, max_sessions=settings.history_max_sessions)
    orchestrator = RenderOrchestrator(
        registry=registry,
        client=RemoteJobClient(settings, http_client),
        poller=StatusPoller(settings, http_client),
    )
    logger.info(f"服务装配完成: 渲染服务 {settings.kie_base_url}, 历史上限 {settings.history_max_sessions}")
    return ServiceContainer(
        settings=settings,
        http_client=http_client,
        registry=registry,
        orchestrator=orchestrator,
        image_host=ImageHostService(settings, http_client),
        _prompt_service=prompt_service,
    )
