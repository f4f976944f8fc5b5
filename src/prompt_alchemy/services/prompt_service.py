"""
提示词生成服务 - 外部模型的一次请求/响应调用
"""
import asyncio
import json
import re
from dataclasses import dataclass
from typing import Optional

from prompt_alchemy.core import get_logger
from prompt_alchemy.core.exceptions import PromptGenerationError
from prompt_alchemy.models.prompt_session import GenerationMode
from prompt_alchemy.services.llm_service import LLMService

logger = get_logger(__name__)


SYSTEM_PROMPT = """You are an expert prompt engineer for high-end AI image generators.
You will be provided with one or more reference images.
For EACH reference image you must generate exactly the requested number of prompts.
If the mode is CHARACTER_SHEET, describe the person's figure, outfit and facial features and
explicitly request "split-view, multiple angles, front, side, and back views, consistent character design, full body".
Respond ONLY with a valid JSON object:
{"results": [{"imageIndex": 0, "prompts": ["...", "..."]}]}"""


@dataclass(frozen=True)
class GeneratedPrompt:
    """生成的一条提示词及其来源参考图"""

    text: str
    reference_url: Optional[str] = None


def _clean_json(raw: str) -> str:
    """去掉 Markdown 代码块包裹，截取 JSON 对象"""
    text = (raw or "").strip()
    fence = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fence:
        text = fence.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise PromptGenerationError("模型没有返回 JSON 结果")
    return text[start:end + 1]


def parse_prompt_results(raw: str, references: list[str]) -> list[GeneratedPrompt]:
    """
    解析 {"results": [{"imageIndex": n, "prompts": [...]}]}

    imageIndex 越界时提示词保留，但不关联参考图。
    """
    try:
        parsed = json.loads(_clean_json(raw))
    except json.JSONDecodeError as e:
        raise PromptGenerationError(f"模型返回的 JSON 无法解析: {e}") from e

    results = parsed.get("results") if isinstance(parsed, dict) else None
    if not isinstance(results, list):
        # 兼容只返回 {"prompts": [...]} 的情况
        prompts = parsed.get("prompts") if isinstance(parsed, dict) else None
        if isinstance(prompts, list):
            results = [{"imageIndex": 0, "prompts": prompts}]
        else:
            raise PromptGenerationError("模型返回中没有 results 字段")

    generated: list[GeneratedPrompt] = []
    for item in results:
        if not isinstance(item, dict):
            continue
        index = item.get("imageIndex") or 0
        reference = references[index] if isinstance(index, int) and 0 <= index < len(references) else None
        for text in item.get("prompts") or []:
            if isinstance(text, str) and text.strip():
                generated.append(GeneratedPrompt(text=text.strip(), reference_url=reference))

    if not generated:
        raise PromptGenerationError("模型没有生成任何提示词")
    return generated


def build_instruction(
    mode: GenerationMode,
    count: int,
    style_count: int,
    subject_count: int,
    custom_text: Optional[str] = None,
) -> str:
    """根据模式构建用户指令"""
    if mode == GenerationMode.RANDOM_CREATIVE:
        text = (
            f"I have provided {subject_count} subject image(s). For EACH subject image, generate {count} "
            "DISTINCT photorealistic prompts. Maintain subject consistency with varied outfits and settings."
        )
    elif mode == GenerationMode.CHARACTER_SHEET:
        text = f"For EACH subject image, generate {count} character reference sheet prompts."
    else:
        text = (
            f"I have provided {style_count} style reference image(s)"
            + (f" and {subject_count} subject(s)" if subject_count else "")
            + f". For EACH style image, generate {count} prompts"
            + (" featuring the provided subject" if subject_count else "")
            + " that replicate that image's aesthetic, lighting and composition."
        )
    text += f" Mode: {mode.value}. Count: {count}."
    if custom_text:
        text += f' Context: "{custom_text}".'
    return text + " Ensure the output is JSON."


class PromptGenerationService:
    """提示词生成服务（无状态）"""

    def __init__(self, llm: LLMService):
        self.llm = llm

    async def generate(
        self,
        style_urls: list[str],
        subject_urls: list[str],
        count: int = 3,
        mode: GenerationMode = GenerationMode.MATCH_STYLE,
        custom_text: Optional[str] = None,
    ) -> list[GeneratedPrompt]:
        """
        基于参考图生成提示词

        MATCH_STYLE 模式按风格图归属，其余模式按人物图归属。

        Raises:
            ValueError: 缺少参考图
            PromptGenerationError: 模型返回不可用
        """
        uses_subjects = mode != GenerationMode.MATCH_STYLE
        if uses_subjects and not subject_urls:
            raise ValueError("该模式需要至少一张人物参考图")
        if not uses_subjects and not style_urls:
            raise ValueError("请至少添加一张风格参考图")

        if uses_subjects:
            references = list(subject_urls)
            images = list(subject_urls)
        else:
            references = list(style_urls)
            images = list(style_urls) + list(subject_urls)
        instruction = build_instruction(mode, count, len(style_urls), len(subject_urls), custom_text)

        logger.info(f"生成提示词: mode={mode.value}, count={count}, 参考图={len(images)} 张")

        # 使用 to_thread 调用同步方法
        raw: str = await asyncio.to_thread(
            self.llm.chat_with_images,
            instruction,
            images,
            SYSTEM_PROMPT,
        )
        if not raw or not raw.strip():
            raise PromptGenerationError("模型返回为空")

        prompts = parse_prompt_results(raw, references)
        logger.info(f"提示词生成完成，共 {len(prompts)} 条")
        return prompts
