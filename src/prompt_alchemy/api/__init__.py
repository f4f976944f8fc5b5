"""
API 路由模块
"""
from fastapi import APIRouter
from .sessions import router as sessions_router
from .renders import router as renders_router
from .references import router as references_router

# 创建主路由
api_router = APIRouter(prefix="/api")

api_router.include_router(sessions_router)
api_router.include_router(renders_router)
api_router.include_router(references_router)

__all__ = ["api_router"]
