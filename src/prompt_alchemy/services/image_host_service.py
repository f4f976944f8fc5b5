"""
图床服务 - 渲染后端只接受可公开访问的图片URL
"""
import base64

import httpx

from prompt_alchemy.core import Settings, get_logger
from prompt_alchemy.core.exceptions import ReferenceNotReadyError

logger = get_logger(__name__)


def strip_data_url(data: str) -> str:
    """去掉 data:image/...;base64, 前缀"""
    return data.split(",", 1)[1] if data.startswith("data:") and "," in data else data


class ImageHostService:
    """imgbb 兼容的图床上传"""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    async def upload(self, data: bytes, name: str = "reference") -> str:
        """
        上传图片并返回公开URL

        Raises:
            ReferenceNotReadyError: 未配置图床、上传失败或响应中没有URL
        """
        if not data:
            raise ReferenceNotReadyError("图片内容为空")
        if not self.settings.image_host_api_key:
            raise ReferenceNotReadyError("未配置图床 API Key")

        form = {
            "key": self.settings.image_host_api_key,
            "image": base64.b64encode(data).decode("ascii"),
            "name": name,
        }
        try:
            response = await self.http_client.post(
                self.settings.image_host_url,
                data=form,
                timeout=self.settings.request_timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"参考图上传失败: {e}")
            raise ReferenceNotReadyError(f"参考图上传失败: {e}") from e

        payload = body.get("data") if isinstance(body, dict) else None
        url = None
        if isinstance(payload, dict):
            url = payload.get("url") or payload.get("display_url")
        if not url:
            logger.error(f"图床响应中没有URL: {body}")
            raise ReferenceNotReadyError("图床响应中没有图片URL")

        logger.info(f"参考图已上传: {url}")
        return url

    async def upload_base64(self, data: str, name: str = "reference") -> str:
        try:
            raw = base64.b64decode(strip_data_url(data), validate=True)
        except ValueError as e:
            raise ReferenceNotReadyError("图片不是合法的 base64 数据") from e
        return await self.upload(raw, name)
