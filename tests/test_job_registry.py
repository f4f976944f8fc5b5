"""
任务注册表（持久化层）测试
"""
import json

from sqlmodel import Session, select

from conftest import add_session
from prompt_alchemy.models.history_document import HistoryDocument
from prompt_alchemy.models.prompt_session import PromptRecord, PromptSession
from prompt_alchemy.models.render_job import JobState, RenderRequest
from prompt_alchemy.services.job_registry import JobRegistry
from prompt_alchemy.services.job_state import JobSnapshot


def _request() -> RenderRequest:
    return RenderRequest(prompt="a cat", reference_urls=["https://ref/0.png"])


class TestSessions:
    """会话的增删与淘汰"""

    def test_newest_first(self, registry: JobRegistry):
        first = add_session(registry, "one")
        second = add_session(registry, "two")

        assert [s.id for s in registry.snapshot()] == [second.id, first.id]

    def test_eviction_keeps_exactly_n_sessions(self, registry: JobRegistry):
        created = [add_session(registry, f"prompt {i}") for i in range(registry.max_sessions + 1)]

        stored = registry.snapshot()
        assert len(stored) == registry.max_sessions
        # 最旧的会话被淘汰
        assert created[0].id not in {s.id for s in stored}
        assert [s.id for s in stored] == [s.id for s in reversed(created[1:])]

    def test_restore_truncates(self, engine):
        registry = JobRegistry(engine, max_sessions=2)
        sessions = [PromptSession(prompts=[PromptRecord(text=str(i))]) for i in range(4)]

        kept = registry.restore(sessions)

        assert [s.id for s in kept] == [s.id for s in sessions[:2]]
        assert [s.id for s in registry.snapshot()] == [s.id for s in sessions[:2]]

    def test_history_survives_new_registry_instance(self, engine):
        prompt_session = add_session(JobRegistry(engine), "persisted")

        reopened = JobRegistry(engine)
        assert reopened.get_session(prompt_session.id) == prompt_session

    def test_delete_session_and_prompt(self, registry: JobRegistry):
        prompt_session = add_session(registry, "a", "b")
        prompt_id = prompt_session.prompts[0].id

        assert registry.delete_prompt(prompt_id).id == prompt_id
        assert registry.find_prompt(prompt_id) is None
        assert len(registry.get_session(prompt_session.id).prompts) == 1

        assert registry.delete_session(prompt_session.id) is not None
        assert registry.delete_session(prompt_session.id) is None
        assert registry.snapshot() == []

    def test_history_row_is_rewritten_in_place(self, engine):
        registry = JobRegistry(engine)
        first = add_session(registry, "one")
        second = add_session(registry, "two")

        with Session(engine) as session:
            rows = session.exec(select(HistoryDocument)).all()

        assert [row.key for row in rows] == ["history"]
        assert [s["id"] for s in json.loads(rows[0].payload)] == [second.id, first.id]

    def test_corrupt_document_reads_as_empty(self, engine):
        with Session(engine) as session:
            session.add(HistoryDocument(key="history", payload="{broken"))
            session.commit()

        registry = JobRegistry(engine)
        assert registry.snapshot() == []
        add_session(registry, "fresh start")
        assert len(registry.snapshot()) == 1


class TestJobRecords:
    """任务提交与状态迁移"""

    def test_record_submission_replaces_previous_job(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())
        registry.record_transition(prompt_id, "task-1", JobSnapshot.failed("boom"))
        registry.record_submission_error(prompt_id, "earlier failure")

        job = registry.record_submission(prompt_id, "task-2", _request())

        record = registry.find_prompt(prompt_id)
        assert job.id == "task-2"
        assert record.job.state == JobState.PENDING
        assert record.job.error_message is None
        assert record.submit_error is None

    def test_transition_to_success(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())

        job = registry.record_transition(prompt_id, "task-1", JobSnapshot.succeeded(["https://x/y.png"]))

        assert job.state == JobState.SUCCEEDED
        assert registry.find_prompt(prompt_id).job.result_urls == ["https://x/y.png"]

    def test_terminal_job_ignores_later_results(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())
        registry.record_transition(prompt_id, "task-1", JobSnapshot.succeeded(["https://x/y.png"]))

        job = registry.record_transition(prompt_id, "task-1", JobSnapshot.failed("late"))

        assert job.state == JobState.SUCCEEDED
        assert job.error_message is None
        assert job.result_urls == ["https://x/y.png"]

    def test_stale_job_id_is_discarded(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())
        registry.record_submission(prompt_id, "task-2", _request())

        assert registry.record_transition(prompt_id, "task-1", JobSnapshot.succeeded(["https://old"])) is None
        assert registry.find_prompt(prompt_id).job.state == JobState.PENDING

    def test_transition_for_deleted_prompt_is_discarded(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())
        registry.delete_prompt(prompt_id)

        assert registry.record_transition(prompt_id, "task-1", JobSnapshot.succeeded(["https://x"])) is None

    def test_timeout_flag(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a").prompts[0].id
        registry.record_submission(prompt_id, "task-1", _request())

        job = registry.record_timeout(prompt_id, "task-1")

        assert job.timed_out is True
        assert job.state == JobState.PENDING
        assert registry.record_timeout(prompt_id, "task-1", timed_out=False).timed_out is False

    def test_find_prompt_by_job(self, registry: JobRegistry):
        prompt_id = add_session(registry, "a", "b").prompts[1].id
        registry.record_submission(prompt_id, "task-5", _request())

        assert registry.find_prompt_by_job("task-5").id == prompt_id
        assert registry.find_prompt_by_job("missing") is None

    def test_all_unresolved_jobs(self, registry: JobRegistry):
        prompt_session = add_session(registry, "pending", "succeeded", "failed", "no job")
        pending, succeeded, failed, _ = [p.id for p in prompt_session.prompts]
        registry.record_submission(pending, "task-1", _request())
        registry.record_submission(succeeded, "task-2", _request())
        registry.record_transition(succeeded, "task-2", JobSnapshot.succeeded(["https://x"]))
        registry.record_submission(failed, "task-3", _request())
        registry.record_transition(failed, "task-3", JobSnapshot.failed("boom"))

        assert registry.all_unresolved_jobs() == [(pending, "task-1")]
