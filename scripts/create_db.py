"""
创建数据库表，并打印当前历史概况
"""
from prompt_alchemy.core import get_settings
from prompt_alchemy.core.database import create_db_engine, init_db
from prompt_alchemy.services.job_registry import JobRegistry

settings = get_settings()

if __name__ == "__main__":
    engine = create_db_engine(settings.database_url)
    init_db(engine)

    registry = JobRegistry(engine, max_sessions=settings.history_max_sessions)
    sessions = registry.snapshot()
    unresolved = registry.all_unresolved_jobs()

    print("✅ 数据库表创建完成")
    print(f"历史会话 {len(sessions)} 个，未完成的渲染任务 {len(unresolved)} 个")
