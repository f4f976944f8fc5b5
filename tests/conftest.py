"""
测试配置
"""
import os
import sys
from typing import Any, Optional

import pytest

# 添加 src 目录到 Python 路径
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

# 设置测试环境变量
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["KIE_API_KEY"] = "test-key"
os.environ["OPENAI_API_KEY"] = "test-key"

import httpx

from prompt_alchemy.core.config import Settings
from prompt_alchemy.core.database import create_db_engine, init_db
from prompt_alchemy.models.prompt_session import PromptRecord, PromptSession
from prompt_alchemy.services.job_client import RemoteJobClient
from prompt_alchemy.services.job_registry import JobRegistry
from prompt_alchemy.services.render_orchestrator import RenderOrchestrator
from prompt_alchemy.services.status_poller import StatusPoller

KIE_BASE_URL = "https://kie.test"
IMAGE_HOST_URL = "https://img.test/upload"


def make_settings(**overrides) -> Settings:
    values = dict(
        kie_api_key="test-key",
        kie_base_url=KIE_BASE_URL,
        poll_interval_seconds=0,
        poll_max_attempts=5,
        history_max_sessions=3,
        database_url="sqlite://",
        image_host_url=IMAGE_HOST_URL,
        image_host_api_key="img-key",
        render_callback_url="",
    )
    values.update(overrides)
    return Settings(**values)


def task_status(job_id: str, state: Optional[str], **extra) -> tuple[int, Any]:
    """构造 recordInfo 响应"""
    data: dict[str, Any] = {"taskId": job_id, **extra}
    if state is not None:
        data["state"] = state
    return 200, {"code": 200, "msg": "success", "data": data}


class FakeKie:
    """
    模拟渲染服务

    createTask 依次返回 task-1、task-2 ...；recordInfo 按任务ID依次返回预设响应，
    最后一个响应重复使用。
    """

    def __init__(self):
        self.create_responses: list[tuple[int, Any]] = []
        self.status_responses: dict[str, list[tuple[int, Any]]] = {}
        self.default_status: tuple[int, Any] = (200, {"code": 200, "data": {"state": "waiting"}})
        self.image_host_response: tuple[int, Any] = (200, {"data": {"url": "https://img.test/ref.png"}})
        self.requests: list[httpx.Request] = []
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path.endswith("/createTask"):
            if self.create_responses:
                status_code, body = self.create_responses.pop(0)
                return _response(status_code, body)
            self._counter += 1
            return httpx.Response(
                200,
                json={"code": 200, "msg": "success", "data": {"taskId": f"task-{self._counter}"}},
            )

        if request.method == "GET" and path.endswith("/recordInfo"):
            job_id = request.url.params.get("taskId")
            queue = self.status_responses.get(job_id)
            if not queue:
                return _response(*self.default_status)
            status_code, body = queue.pop(0) if len(queue) > 1 else queue[0]
            return _response(status_code, body)

        if str(request.url) == IMAGE_HOST_URL:
            return _response(*self.image_host_response)

        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def create_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/createTask")]

    def status_calls(self, job_id: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.path.endswith("/recordInfo") and (job_id is None or r.url.params.get("taskId") == job_id)
        ]


def _response(status_code: int, body: Any) -> httpx.Response:
    if body is None:
        return httpx.Response(status_code)
    if isinstance(body, str):
        return httpx.Response(status_code, text=body)
    return httpx.Response(status_code, json=body)


def build_orchestrator(registry: JobRegistry, settings: Settings, http_client: httpx.AsyncClient) -> RenderOrchestrator:
    return RenderOrchestrator(
        registry=registry,
        client=RemoteJobClient(settings, http_client),
        poller=StatusPoller(settings, http_client),
    )


def add_session(registry: JobRegistry, *texts: str) -> PromptSession:
    prompt_session = PromptSession(
        prompts=[PromptRecord(text=text, reference_url=f"https://ref.test/{i}.png") for i, text in enumerate(texts)]
    )
    return registry.add_session(prompt_session)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine():
    """测试数据库 fixture"""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def registry(engine) -> JobRegistry:
    return JobRegistry(engine, max_sessions=3)


@pytest.fixture
def fake_kie() -> FakeKie:
    return FakeKie()
