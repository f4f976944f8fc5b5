"""
状态响应解析测试
"""
import json

import pytest

from prompt_alchemy.core.exceptions import ResultMissingError
from prompt_alchemy.models.render_job import JobState
from prompt_alchemy.services.result_decoder import (
    DEFAULT_FAIL_MESSAGE,
    Found,
    NotFound,
    classify_state,
    decode_result_urls,
    extract_fail_message,
    interpret_task,
    unwrap_task_data,
)


@pytest.mark.parametrize("raw", ["success", "SUCCESS", "Completed", "succeeded", " done "])
def test_success_synonyms(raw: str) -> None:
    assert classify_state(raw) == JobState.SUCCEEDED


@pytest.mark.parametrize("raw", ["fail", "FAILED", "Error", "failure"])
def test_failure_synonyms(raw: str) -> None:
    assert classify_state(raw) == JobState.FAILED


@pytest.mark.parametrize("raw", [None, "", "running", "waiting", "queuing", "generating", "???"])
def test_everything_else_is_pending(raw) -> None:
    assert classify_state(raw) == JobState.PENDING


def test_string_result_json_is_parsed_first() -> None:
    task_data = {
        "state": "success",
        "resultJson": json.dumps({"resultUrls": ["https://x/y.png", "https://x/z.png"]}),
        "imageUrl": "https://fallback/ignored.png",
    }

    assert decode_result_urls(task_data) == Found(("https://x/y.png", "https://x/z.png"))


def test_nested_object_result() -> None:
    task_data = {"state": "success", "result": {"urls": ["https://nested/1.png"]}}

    decoded = decode_result_urls(task_data)
    assert isinstance(decoded, Found)
    assert decoded.url == "https://nested/1.png"


def test_object_typed_result_json() -> None:
    task_data = {"resultJson": {"resultUrls": ["https://obj/1.png"]}}

    assert decode_result_urls(task_data) == Found(("https://obj/1.png",))


def test_broken_result_json_falls_back_to_scalar() -> None:
    task_data = {"resultJson": "{not json", "resultUrl": "https://scalar/1.png"}

    assert decode_result_urls(task_data) == Found(("https://scalar/1.png",))


def test_list_on_task_object_itself() -> None:
    assert decode_result_urls({"resultUrls": ["https://cb/1.png"]}) == Found(("https://cb/1.png",))


def test_no_result_fields_is_not_found() -> None:
    decoded = decode_result_urls({"state": "success", "resultJson": json.dumps({"resultUrls": []})})
    assert isinstance(decoded, NotFound)


def test_decoding_is_idempotent() -> None:
    task_data = {"state": "success", "resultJson": "{\"resultUrls\":[\"https://x/y.png\"]}"}

    first = decode_result_urls(task_data)
    second = decode_result_urls(task_data)
    assert first == second == Found(("https://x/y.png",))


def test_unwrap_envelope() -> None:
    assert unwrap_task_data({"code": 200, "data": {"state": "success"}}) == {"state": "success"}
    assert unwrap_task_data({"state": "fail"}) == {"state": "fail"}
    assert unwrap_task_data("oops") == {}


def test_fail_message_uses_upstream_text() -> None:
    assert extract_fail_message({"failMsg": "content policy violation"}) == "content policy violation"
    assert extract_fail_message({"error": {"message": "quota exceeded"}}) == "quota exceeded"
    assert extract_fail_message({}) == DEFAULT_FAIL_MESSAGE


def test_interpret_success_without_urls_raises() -> None:
    with pytest.raises(ResultMissingError) as exc_info:
        interpret_task("task-1", {"state": "success"})
    assert exc_info.value.job_id == "task-1"


def test_interpret_failed_and_pending() -> None:
    failed = interpret_task("task-1", {"state": "fail", "failMsg": "nsfw"})
    assert failed.state == JobState.FAILED
    assert failed.error_message == "nsfw"

    assert interpret_task("task-1", {}).state == JobState.PENDING
