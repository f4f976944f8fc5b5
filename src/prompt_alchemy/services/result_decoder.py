"""
状态响应解析

远程服务的响应结构并不统一：
- 结果列表有时在 JSON 对象里，有时在一个 JSON 字符串里（resultJson）
- 列表字段名不固定，有时只给一个 imageUrl / resultUrl
- 状态字段大小写、同义词都不固定

这里的函数都是纯函数，不依赖网络。
"""
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from prompt_alchemy.core.exceptions import ResultMissingError
from prompt_alchemy.models.render_job import JobState
from prompt_alchemy.services.job_state import JobSnapshot

SUCCESS_STATES = frozenset({"success", "succeeded", "completed", "complete", "done"})
FAILURE_STATES = frozenset({"fail", "failed", "error", "failure"})

STATE_KEYS = ("state", "status", "taskStatus")
RESULT_LIST_KEYS = ("resultUrls", "result_urls", "urls", "images")
NESTED_RESULT_KEYS = ("resultJson", "result", "response")
SCALAR_RESULT_KEYS = ("imageUrl", "resultUrl", "image_url", "result_url")
FAIL_MESSAGE_KEYS = ("failMsg", "errorMessage", "error", "msg", "message")

DEFAULT_FAIL_MESSAGE = "渲染任务失败，服务端未返回原因"


@dataclass(frozen=True)
class Found:
    """解析到的结果URL（至少一个）"""

    urls: tuple[str, ...]

    @property
    def url(self) -> str:
        return self.urls[0]


@dataclass(frozen=True)
class NotFound:
    """没有可用的结果URL"""

    reason: str = ""


DecodeResult = Union[Found, NotFound]


def unwrap_task_data(body: Any) -> dict:
    """取出 {code, msg, data: {...}} 信封里的任务数据；没有信封时原样返回"""
    if not isinstance(body, dict):
        return {}
    data = body.get("data")
    if isinstance(data, dict):
        return data
    return body


def read_state_field(task_data: dict) -> Optional[str]:
    for key in STATE_KEYS:
        value = task_data.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def classify_state(raw_state: Optional[str]) -> JobState:
    """
    状态分类（大小写不敏感）

    非终态一律视为 pending，包括缺失、未知的状态值。
    """
    if not raw_state:
        return JobState.PENDING
    normalized = raw_state.strip().lower()
    if normalized in SUCCESS_STATES:
        return JobState.SUCCEEDED
    if normalized in FAILURE_STATES:
        return JobState.FAILED
    return JobState.PENDING


def _urls_from_value(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, list):
        return tuple(item.strip() for item in value if isinstance(item, str) and item.strip())
    return ()


def _urls_from_object(obj: dict) -> tuple[str, ...]:
    for key in RESULT_LIST_KEYS:
        urls = _urls_from_value(obj.get(key))
        if urls:
            return urls
    return ()


def decode_result_urls(task_data: dict) -> DecodeResult:
    """
    按固定顺序尝试解析结果URL：

    1. 字符串类型的 resultJson，先解析为 JSON 再读取列表字段
    2. 嵌套对象（resultJson / result / response）的列表字段，其次是任务对象自身的列表字段
    3. 单个 imageUrl / resultUrl 字段
    """
    if not isinstance(task_data, dict):
        return NotFound("任务数据不是 JSON 对象")

    raw_result_json = task_data.get("resultJson")
    if isinstance(raw_result_json, str) and raw_result_json.strip():
        try:
            parsed = json.loads(raw_result_json)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            urls = _urls_from_object(parsed)
            if urls:
                return Found(urls)

    for key in NESTED_RESULT_KEYS:
        nested = task_data.get(key)
        if isinstance(nested, dict):
            urls = _urls_from_object(nested)
            if urls:
                return Found(urls)

    # 回调推送里列表直接放在任务对象上
    urls = _urls_from_object(task_data)
    if urls:
        return Found(urls)

    for key in SCALAR_RESULT_KEYS:
        urls = _urls_from_value(task_data.get(key))
        if urls:
            return Found(urls[:1])

    return NotFound("响应中没有 resultJson / result / imageUrl 等结果字段")


def extract_fail_message(task_data: dict) -> str:
    for key in FAIL_MESSAGE_KEYS:
        value = task_data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return DEFAULT_FAIL_MESSAGE


def interpret_task(job_id: str, task_data: dict) -> JobSnapshot:
    """
    把一次状态响应解释为快照

    Raises:
        ResultMissingError: 状态为成功但解析不出结果URL
    """
    state = classify_state(read_state_field(task_data))

    if state == JobState.SUCCEEDED:
        decoded = decode_result_urls(task_data)
        if isinstance(decoded, NotFound):
            raise ResultMissingError(job_id, payload=task_data)
        return JobSnapshot.succeeded(decoded.urls)

    if state == JobState.FAILED:
        return JobSnapshot.failed(extract_fail_message(task_data))

    return JobSnapshot.pending()
