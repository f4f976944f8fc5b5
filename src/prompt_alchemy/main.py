"""
FastAPI 应用入口
"""
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prompt_alchemy.api import api_router
from prompt_alchemy.core import Settings, get_logger, get_settings, setup_logging
from prompt_alchemy.services.container import build_container
from prompt_alchemy.services.prompt_service import PromptGenerationService

logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    prompt_service: Optional[PromptGenerationService] = None,
) -> FastAPI:
    """
    创建应用

    Args:
        settings: 配置，默认从环境变量读取
        transport: 自定义 HTTP 传输（测试时替换远程服务）
        prompt_service: 自定义提示词生成服务
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info("🚀 Prompt Alchemy API 启动中...")
        services = build_container(settings, transport=transport, prompt_service=prompt_service)
        app.state.services = services

        # 重启前未完成的任务重新挂上轮询
        resumed = await services.orchestrator.resume_all()
        logger.info(f"已恢复 {len(resumed)} 个渲染任务的轮询")
        try:
            yield
        finally:
            await services.aclose()
            logger.info("👋 Prompt Alchemy API 关闭")

    app = FastAPI(
        title="Prompt Alchemy API",
        description="参考图生成提示词，并异步渲染为图片",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=DEFAULT_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/")
    async def root():
        """健康检查"""
        return {"status": "ok", "message": "Prompt Alchemy API 运行中"}

    @app.get("/health")
    async def health():
        """健康检查"""
        return {"status": "healthy"}

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(f"启动服务: http://{settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "prompt_alchemy.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
