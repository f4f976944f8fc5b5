"""
日志配置
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# 轮询期间每次查询都会产生请求日志，默认只保留警告
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine")


def _resolve_level(log_level: str) -> int:
    level = logging.getLevelName(str(log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(log_level: str = "INFO") -> logging.Handler:
    """
    配置根日志记录器

    可重复调用：只更新级别，不会重复添加控制台处理器。
    未知的级别名按 INFO 处理。

    Returns:
        本模块安装的控制台处理器
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(log_level))

    handler = next((h for h in root_logger.handlers if getattr(h, "_prompt_alchemy", False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        handler._prompt_alchemy = True
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    """
    获取日志记录器

    用法:
        logger = get_logger(__name__)
        logger.info("信息日志")
    """
    return logging.getLogger(name)
