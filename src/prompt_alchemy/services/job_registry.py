"""
任务注册表 - 会话历史的持久化层

整份历史作为一个 JSON 文档存储。每次修改都读取完整文档、
替换目标记录、再整体写回，读者不会看到写了一半的数据。
"""
from datetime import datetime
from typing import Callable, Optional

from pydantic import TypeAdapter, ValidationError
from sqlmodel import Session

from prompt_alchemy.core import get_logger
from prompt_alchemy.models.history_document import HistoryDocument
from prompt_alchemy.models.prompt_session import PromptRecord, PromptSession
from prompt_alchemy.models.render_job import RenderJob, RenderRequest
from prompt_alchemy.services.job_state import JobSnapshot, apply_snapshot

logger = get_logger(__name__)

HISTORY_KEY = "history"

_sessions_adapter = TypeAdapter(list[PromptSession])


class JobRegistry:
    """
    会话与任务的持久化记录

    会话按时间倒序存储（最新在前），写入时截断为最近 max_sessions 个。
    """

    def __init__(self, engine, max_sessions: int = 10, key: str = HISTORY_KEY):
        if max_sessions < 1:
            raise ValueError("max_sessions 必须大于 0")
        self.engine = engine
        self.max_sessions = max_sessions
        self.key = key

    # ============ 文档读写 ============

    def _load(self, session: Session) -> list[PromptSession]:
        document = session.get(HistoryDocument, self.key)
        if document is None:
            return []
        try:
            return _sessions_adapter.validate_json(document.payload)
        except ValidationError as e:
            logger.error(f"历史文档已损坏，按空历史处理: {e}")
            return []

    def _store(self, session: Session, sessions: list[PromptSession]) -> list[PromptSession]:
        kept = list(sessions[: self.max_sessions])
        if len(sessions) > len(kept):
            logger.info(f"历史会话超过上限 {self.max_sessions}，淘汰 {len(sessions) - len(kept)} 个最旧会话")

        payload = _sessions_adapter.dump_json(kept).decode("utf-8")
        document = session.get(HistoryDocument, self.key)
        if document is None:
            document = HistoryDocument(key=self.key, payload=payload)
        else:
            document.payload = payload
        session.add(document)
        session.commit()
        return kept

    def _update(
        self,
        mutate: Callable[[list[PromptSession]], Optional[list[PromptSession]]],
    ) -> list[PromptSession]:
        """读取完整文档 → 生成新列表 → 整体写回；mutate 返回 None 表示无变化"""
        with Session(self.engine) as session:
            current = self._load(session)
            updated = mutate(current)
            if updated is None:
                return current
            return self._store(session, updated)

    def _replace_prompt(
        self,
        prompt_id: str,
        replace: Callable[[PromptRecord], Optional[PromptRecord]],
    ) -> Optional[PromptRecord]:
        """
        替换一条提示词记录

        replace 返回 None 表示不修改。返回替换后的记录；记录不存在时返回 None。
        """
        result: dict[str, PromptRecord] = {}

        def mutate(sessions: list[PromptSession]) -> Optional[list[PromptSession]]:
            for s_index, prompt_session in enumerate(sessions):
                for p_index, record in enumerate(prompt_session.prompts):
                    if record.id != prompt_id:
                        continue
                    new_record = replace(record)
                    if new_record is None:
                        result["record"] = record
                        return None
                    result["record"] = new_record
                    prompts = list(prompt_session.prompts)
                    prompts[p_index] = new_record
                    new_sessions = list(sessions)
                    new_sessions[s_index] = prompt_session.model_copy(update={"prompts": prompts})
                    return new_sessions
            return None

        self._update(mutate)
        return result.get("record")

    # ============ 快照 / 恢复 ============

    def snapshot(self) -> list[PromptSession]:
        """读取完整历史（最新在前）"""
        with Session(self.engine) as session:
            return self._load(session)

    def restore(self, sessions: list[PromptSession]) -> list[PromptSession]:
        """整体替换历史，返回截断后实际保存的列表"""
        return self._update(lambda _current: list(sessions))

    # ============ 会话 ============

    def add_session(self, prompt_session: PromptSession) -> PromptSession:
        """新增会话（放在最前），超出上限时淘汰最旧的"""
        self._update(lambda current: [prompt_session, *current])
        logger.info(f"新增会话 {prompt_session.id}，包含 {len(prompt_session.prompts)} 条提示词")
        return prompt_session

    def get_session(self, session_id: str) -> Optional[PromptSession]:
        for prompt_session in self.snapshot():
            if prompt_session.id == session_id:
                return prompt_session
        return None

    def delete_session(self, session_id: str) -> Optional[PromptSession]:
        removed: dict[str, PromptSession] = {}

        def mutate(sessions: list[PromptSession]) -> Optional[list[PromptSession]]:
            kept = []
            for prompt_session in sessions:
                if prompt_session.id == session_id:
                    removed["session"] = prompt_session
                else:
                    kept.append(prompt_session)
            return kept if removed else None

        self._update(mutate)
        return removed.get("session")

    def clear(self) -> None:
        self._update(lambda _current: [])

    # ============ 提示词 ============

    def find_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        for prompt_session in self.snapshot():
            for record in prompt_session.prompts:
                if record.id == prompt_id:
                    return record
        return None

    def find_prompt_by_job(self, job_id: str) -> Optional[PromptRecord]:
        for prompt_session in self.snapshot():
            for record in prompt_session.prompts:
                if record.job is not None and record.job.id == job_id:
                    return record
        return None

    def delete_prompt(self, prompt_id: str) -> Optional[PromptRecord]:
        removed: dict[str, PromptRecord] = {}

        def mutate(sessions: list[PromptSession]) -> Optional[list[PromptSession]]:
            new_sessions = []
            for prompt_session in sessions:
                prompts = [p for p in prompt_session.prompts if p.id != prompt_id]
                if len(prompts) != len(prompt_session.prompts):
                    removed["record"] = next(p for p in prompt_session.prompts if p.id == prompt_id)
                    prompt_session = prompt_session.model_copy(update={"prompts": prompts})
                new_sessions.append(prompt_session)
            return new_sessions if removed else None

        self._update(mutate)
        return removed.get("record")

    # ============ 任务记录 ============

    def record_submission(
        self,
        prompt_id: str,
        job_id: str,
        request: RenderRequest,
    ) -> Optional[RenderJob]:
        """
        记录新提交的任务

        新任务覆盖旧任务（旧结果丢弃），同时清除上次的提交错误。
        """
        job = RenderJob(id=job_id, request=request)

        record = self._replace_prompt(
            prompt_id,
            lambda r: r.model_copy(update={"job": job, "submit_error": None}),
        )
        if record is None:
            logger.warning(f"记录任务 {job_id} 时提示词 {prompt_id} 已不存在")
            return None
        return record.job

    def record_submission_error(self, prompt_id: str, message: str) -> Optional[PromptRecord]:
        return self._replace_prompt(
            prompt_id,
            lambda r: r.model_copy(update={"submit_error": message}),
        )

    def record_transition(
        self,
        prompt_id: str,
        job_id: str,
        snapshot: JobSnapshot,
    ) -> Optional[RenderJob]:
        """
        应用一次状态观察

        记录不存在、任务ID已被替换时返回 None（结果被丢弃）。
        已是终态的任务保持不变。
        """

        def replace(record: PromptRecord) -> Optional[PromptRecord]:
            if record.job is None or record.job.id != job_id:
                return None
            new_job = apply_snapshot(record.job, snapshot)
            if new_job is record.job:
                return None
            return record.model_copy(update={"job": new_job})

        record = self._replace_prompt(prompt_id, replace)
        if record is None or record.job is None or record.job.id != job_id:
            logger.info(f"丢弃任务 {job_id} 的状态更新：提示词 {prompt_id} 已删除或已重新提交")
            return None
        return record.job

    def record_timeout(self, prompt_id: str, job_id: str, timed_out: bool = True) -> Optional[RenderJob]:
        """标记轮询超时（任务仍是 pending，可能稍后完成）"""

        def replace(record: PromptRecord) -> Optional[PromptRecord]:
            job = record.job
            if job is None or job.id != job_id or job.is_terminal or job.timed_out == timed_out:
                return None
            return record.model_copy(
                update={"job": job.model_copy(update={"timed_out": timed_out, "updated_at": datetime.now()})}
            )

        record = self._replace_prompt(prompt_id, replace)
        if record is None or record.job is None or record.job.id != job_id:
            return None
        return record.job

    def all_unresolved_jobs(self) -> list[tuple[str, str]]:
        """所有有任务ID但没有终态的记录 (prompt_id, job_id)，用于自动恢复"""
        unresolved = []
        for prompt_session in self.snapshot():
            for record in prompt_session.prompts:
                if record.is_unresolved:
                    unresolved.append((record.id, record.job.id))
        return unresolved
