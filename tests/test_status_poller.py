"""
状态轮询器测试
"""
import asyncio
import json

import httpx
import pytest

from conftest import FakeKie, make_settings, task_status
from prompt_alchemy.core.exceptions import (
    JobTimeoutError,
    ProtocolError,
    ResultMissingError,
    StatusQueryError,
)
from prompt_alchemy.models.render_job import JobState
from prompt_alchemy.services.status_poller import StatusPoller


def _collect(fake: FakeKie, job_id: str, settings=None, cancel_after=None):
    """运行轮询，返回 (快照列表, 异常)"""

    async def run():
        snapshots = []
        cancel_event = asyncio.Event()
        async with httpx.AsyncClient(transport=fake.transport()) as http_client:
            poller = StatusPoller(settings or make_settings(), http_client)
            try:
                async for snapshot in poller.poll(job_id, cancel_event):
                    snapshots.append(snapshot)
                    if cancel_after is not None and len(snapshots) >= cancel_after:
                        cancel_event.set()
            except Exception as e:
                return snapshots, e
        return snapshots, None

    return asyncio.run(run())


def test_running_twice_then_success_from_result_json(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [
        task_status("task-1", "running"),
        task_status("task-1", "running"),
        task_status("task-1", "success", resultJson=json.dumps({"resultUrls": ["https://x/y.png"]})),
    ]

    snapshots, error = _collect(fake_kie, "task-1")

    assert error is None
    assert [s.state for s in snapshots] == [JobState.PENDING, JobState.PENDING, JobState.SUCCEEDED]
    assert snapshots[-1].result_urls == ("https://x/y.png",)
    assert len(fake_kie.status_calls("task-1")) == 3


def test_success_without_result_raises_result_missing(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [task_status("task-1", "success")]

    snapshots, error = _collect(fake_kie, "task-1")

    assert snapshots == []
    assert isinstance(error, ResultMissingError)


def test_not_found_is_tolerated_and_counted(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [
        (404, None),
        (404, None),
        (404, None),
        (200, {"state": "success", "imageUrl": "https://z"}),
    ]

    snapshots, error = _collect(fake_kie, "task-1")

    assert error is None
    assert [s.state for s in snapshots] == [JobState.PENDING] * 3 + [JobState.SUCCEEDED]
    assert snapshots[-1].result_urls == ("https://z",)


def test_repeated_not_found_exhausts_budget(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [(404, None)]

    snapshots, error = _collect(fake_kie, "task-1", settings=make_settings(poll_max_attempts=4))

    assert isinstance(error, JobTimeoutError)
    assert isinstance(error, TimeoutError)
    assert error.attempts == 4
    assert len(snapshots) == 4
    assert len(fake_kie.status_calls("task-1")) == 4


def test_failed_state_carries_upstream_message(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [
        task_status("task-1", "generating"),
        task_status("task-1", "FAIL", failMsg="image violates policy"),
    ]

    snapshots, error = _collect(fake_kie, "task-1")

    assert error is None
    assert snapshots[-1].state == JobState.FAILED
    assert snapshots[-1].error_message == "image violates policy"


def test_failed_state_without_message_uses_fallback(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [task_status("task-1", "error")]

    snapshots, _ = _collect(fake_kie, "task-1")

    assert snapshots[-1].state == JobState.FAILED
    assert snapshots[-1].error_message


def test_missing_status_field_keeps_polling(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [
        task_status("task-1", None),
        (502, None),
        task_status("task-1", "completed", result={"resultUrls": ["https://ok.png"]}),
    ]

    snapshots, error = _collect(fake_kie, "task-1")

    assert error is None
    assert [s.state for s in snapshots][-1] == JobState.SUCCEEDED


def test_unauthorized_is_status_query_error(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [(401, {"msg": "bad key"})]

    _, error = _collect(fake_kie, "task-1")

    assert isinstance(error, StatusQueryError)
    assert error.status_code == 401


def test_non_json_body_is_protocol_error(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [(200, "<html>gateway</html>")]

    _, error = _collect(fake_kie, "task-1")

    assert isinstance(error, ProtocolError)


def test_cancel_stops_before_next_request(fake_kie: FakeKie) -> None:
    snapshots, error = _collect(
        fake_kie,
        "task-1",
        settings=make_settings(poll_max_attempts=50),
        cancel_after=2,
    )

    assert error is None
    assert len(snapshots) == 2
    assert len(fake_kie.status_calls("task-1")) == 2


def test_status_request_uses_query_parameter(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-9"] = [task_status("task-9", "success", imageUrl="https://a.png")]

    _collect(fake_kie, "task-9")

    request = fake_kie.status_calls("task-9")[0]
    assert request.url.path == "/api/v1/jobs/recordInfo"
    assert request.url.params["taskId"] == "task-9"
    assert request.headers["Authorization"] == "Bearer test-key"


def test_fetch_snapshot_single_query(fake_kie: FakeKie) -> None:
    fake_kie.status_responses["task-1"] = [task_status("task-1", "queuing")]

    async def run():
        async with httpx.AsyncClient(transport=fake_kie.transport()) as http_client:
            return await StatusPoller(make_settings(), http_client).fetch_snapshot("task-1")

    snapshot = asyncio.run(run())
    assert snapshot.state == JobState.PENDING
    assert len(fake_kie.status_calls()) == 1
