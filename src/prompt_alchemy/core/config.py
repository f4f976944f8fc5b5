"""
配置管理 - 进程启动时构建一次，显式传入各服务
"""
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API 配置
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = True

    # Kie.ai 渲染服务配置
    # 保留 API_KEY 作为兼容别名，避免历史环境变量立即失效。
    kie_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("KIE_API_KEY", "API_KEY"),
    )
    kie_base_url: str = "https://api.kie.ai"
    kie_create_path: str = "/api/v1/jobs/createTask"
    kie_status_path: str = "/api/v1/jobs/recordInfo"
    render_model_standard: str = "nano-banana-pro"
    render_model_unrestricted: str = "seedream/4.5-edit"
    render_callback_url: str = ""
    request_timeout_seconds: float = 60.0

    # 轮询配置：最长等待时间 = 间隔 × 次数
    poll_interval_seconds: float = 3.0
    poll_max_attempts: int = 60

    # 历史记录保留的最大会话数
    history_max_sessions: int = 10

    # OpenAI 兼容视觉模型（提示词生成）
    openai_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "XAI_API_KEY"),
    )
    openai_base_url: str = Field(
        default="https://api.x.ai/v1",
        validation_alias=AliasChoices("OPENAI_BASE_URL", "XAI_BASE_URL"),
    )
    openai_model: str = Field(
        default="grok-2-vision-1212",
        validation_alias=AliasChoices("OPENAI_MODEL", "XAI_MODEL"),
    )

    # 图床配置（imgbb 兼容接口）
    image_host_url: str = "https://api.imgbb.com/1/upload"
    image_host_api_key: str = ""

    # 数据库配置
    database_url: str = "sqlite:///./data/prompt_alchemy.db"

    # 日志配置
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
