"""
服务模块
"""
from .job_client import RemoteJobClient
from .status_poller import StatusPoller
from .job_registry import JobRegistry
from .render_orchestrator import RenderOrchestrator, RenderEvent
from .container import ServiceContainer, build_container

__all__ = [
    "RemoteJobClient",
    "StatusPoller",
    "JobRegistry",
    "RenderOrchestrator",
    "RenderEvent",
    "ServiceContainer",
    "build_container",
]
