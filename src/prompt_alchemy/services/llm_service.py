"""
LLM 服务封装 - 调用 OpenAI 兼容的视觉模型
"""
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from prompt_alchemy.core import Settings, get_logger

logger = get_logger(__name__)


class LLMService:
    """
    LLM 服务封装

    支持图文混合输入，输出 JSON
    """

    def __init__(self, settings: Settings):
        """初始化 LLM 客户端"""
        self.llm = ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key or "not-configured",
            base_url=settings.openai_base_url,
            temperature=0.7,
        )
        self.json_llm = self.llm.bind(response_format={"type": "json_object"})
        logger.info(f"LLM 服务初始化完成，使用模型: {settings.openai_model}")

    def chat_with_images(
        self,
        text: str,
        image_urls: list[str],
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        图文混合调用，要求模型返回 JSON

        Args:
            text: 用户指令
            image_urls: 图片URL（http 或 data URL）
            system_prompt: 系统提示

        Returns:
            LLM 回复内容
        """
        langchain_messages = []
        if system_prompt:
            langchain_messages.append(SystemMessage(content=system_prompt))

        content: list[dict] = [{"type": "text", "text": text}]
        for url in image_urls:
            content.append({"type": "image_url", "image_url": {"url": url}})
        langchain_messages.append(HumanMessage(content=content))

        response = self.json_llm.invoke(langchain_messages)
        return response.content if isinstance(response.content, str) else str(response.content)
