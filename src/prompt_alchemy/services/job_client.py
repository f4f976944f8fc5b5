"""
远程任务客户端 - 向渲染服务提交异步任务并取回任务ID
"""
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from prompt_alchemy.core import Settings, get_logger
from prompt_alchemy.core.exceptions import ProtocolError, SubmissionError
from prompt_alchemy.models.render_job import RenderConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class RenderBackend:
    """渲染后端的字段约定：同一语义在不同模型下字段名不同"""

    model: str
    image_field: str
    resolution_field: str
    resolution_values: dict[str, str] = field(default_factory=dict)

    def resolution_value(self, resolution: str) -> str:
        return self.resolution_values.get(resolution, resolution)


def build_backends(settings: Settings) -> dict[str, RenderBackend]:
    """按内容模式构建后端表"""
    return {
        "standard": RenderBackend(
            model=settings.render_model_standard,
            image_field="image_input",
            resolution_field="resolution",
        ),
        "unrestricted": RenderBackend(
            model=settings.render_model_unrestricted,
            image_field="image_urls",
            resolution_field="quality",
            resolution_values={"1K": "basic", "2K": "basic", "4K": "high"},
        ),
    }


def extract_job_id(body: Any) -> Optional[str]:
    """依次尝试 data.taskId / data.id / taskId"""
    if not isinstance(body, dict):
        return None

    data = body.get("data")
    candidates = []
    if isinstance(data, dict):
        candidates.extend([data.get("taskId"), data.get("id")])
    candidates.append(body.get("taskId"))

    for candidate in candidates:
        if isinstance(candidate, (str, int)) and str(candidate).strip():
            return str(candidate).strip()
    return None


def _upstream_message(body: Any, response: httpx.Response) -> str:
    if isinstance(body, dict):
        for key in ("message", "msg", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return response.reason_phrase or f"HTTP {response.status_code}"


class RemoteJobClient:
    """
    渲染任务提交客户端

    只负责提交，不做持久化，也不自动重试。
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self.create_url = f"{settings.kie_base_url.rstrip('/')}{settings.kie_create_path}"
        self.backends = build_backends(settings)

    def build_payload(
        self,
        prompt: str,
        reference_urls: list[str],
        config: RenderConfig,
    ) -> dict:
        """
        按后端构建请求体

        Args:
            prompt: 提示词
            reference_urls: 参考图URL（可为空）
            config: 渲染参数

        Returns:
            {"model": ..., "input": {...}}
        """
        backend = self.backends[config.content_mode]

        input_payload: dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": config.aspect_ratio,
            backend.resolution_field: backend.resolution_value(config.resolution),
            "output_format": config.output_format,
        }
        if reference_urls:
            input_payload[backend.image_field] = list(reference_urls)

        payload: dict[str, Any] = {"model": backend.model, "input": input_payload}
        if self.settings.render_callback_url:
            payload["callBackUrl"] = self.settings.render_callback_url
        return payload

    async def submit(
        self,
        prompt: str,
        reference_urls: Optional[list[str]] = None,
        config: Optional[RenderConfig] = None,
    ) -> str:
        """
        创建渲染任务

        Returns:
            远程任务ID

        Raises:
            SubmissionError: 网络错误、非 2xx、业务码非 200、缺少 API Key
            ProtocolError: 响应中找不到任务ID
        """
        if not prompt or not prompt.strip():
            raise SubmissionError("提示词不能为空")
        if not self.settings.kie_api_key:
            raise SubmissionError("未配置 KIE_API_KEY，无法提交渲染任务")

        config = config or RenderConfig()
        payload = self.build_payload(prompt.strip(), reference_urls or [], config)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.kie_api_key}",
        }

        logger.info(f"提交渲染任务: model={payload['model']}, 参考图={len(reference_urls or [])} 张")

        try:
            response = await self.http_client.post(
                self.create_url,
                json=payload,
                headers=headers,
                timeout=self.settings.request_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.error(f"提交渲染任务网络错误: {e}")
            raise SubmissionError(f"网络错误: {e}") from e

        if response.status_code == 404:
            raise SubmissionError("创建任务接口不存在 (404)，请检查 KIE_BASE_URL", status_code=404)

        try:
            body = response.json()
        except ValueError:
            body = {}

        code = body.get("code") if isinstance(body, dict) else None
        if not response.is_success or (code is not None and code != 200):
            message = _upstream_message(body, response)
            logger.error(f"创建渲染任务失败: status={response.status_code}, code={code}, message={message}")
            raise SubmissionError(message, status_code=code if isinstance(code, int) else response.status_code)

        job_id = extract_job_id(body)
        if not job_id:
            logger.error(f"创建任务响应中没有任务ID: {body}")
            raise ProtocolError("未能从服务端响应中获取任务ID", payload=body)

        logger.info(f"渲染任务已创建: {job_id}")
        return job_id
