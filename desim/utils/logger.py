#!filepath: desim/utils/logger.py
import sys
import json
from functools import wraps
from pathlib import Path
from time import perf_counter
from typing import Callable, Optional

from loguru import logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"


class Logging:
    """
    引擎日志模块（loguru 封装）
    ---------------------------------------
    - 默认输出到 stderr
    - 可选：按日期切割的文件日志 + 保留周期
    - 包含函数级日志装饰器 catch()
    ---------------------------------------
    日志行统一使用 "[Tag] message" 前缀，例如:
        [Engine] run start t=0
        [Cache] growth:init recovered from cache (3f2a...)
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        rotation: str = "1 day",
        retention: str = "30 days",
        log_level: str = "INFO",
    ):
        self.log_dir = log_dir
        self.rotation = rotation
        self.retention = retention
        self.level = log_level

        self._configure()

    def _configure(self) -> None:
        """
        重新配置全局 logger（移除所有已有 sink）
        """
        logger.remove()

        logger.add(
            sink=sys.stderr,
            level=self.level,
            format=LOG_FORMAT,
            backtrace=True,
            diagnose=False,
        )

        if self.log_dir:
            Path(self.log_dir).mkdir(parents=True, exist_ok=True)
            logger.add(
                sink=f"{self.log_dir}/{{time:YYYY-MM-DD}}.log",
                rotation=self.rotation,
                retention=self.retention,
                level=self.level,
                format=LOG_FORMAT,
                enqueue=True,
                backtrace=True,
                diagnose=True,
            )

    # ---------- 日志方法 ----------
    def debug(self, msg: str, *args, **kwargs):
        logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        logger.exception(msg, *args, **kwargs)

    # ---------- 日志装饰器 ----------
    def catch(
        self,
        msg: str = "Exception occurred",
        log_inputs: bool = False,
        log_outputs: bool = False,
        log_time: bool = True,
    ) -> Callable:
        """
        记录调用 / 返回 / 耗时；异常记录后继续向上抛出。
        """

        def decorator(func: Callable):
            @wraps(func)
            def wrapper(*args, **kwargs):

                if log_inputs:
                    logger.info(
                        f"[CALL] {func.__name__} args={args}, "
                        f"kwargs={json.dumps(kwargs, ensure_ascii=False, default=str)}"
                    )

                start = perf_counter()

                try:
                    result = func(*args, **kwargs)
                except Exception:
                    logger.exception(f"[ERROR] {func.__name__}: {msg}")
                    raise

                if log_outputs:
                    logger.info(f"[RETURN] {func.__name__} result={result}")

                if log_time:
                    cost = perf_counter() - start
                    logger.debug(f"[TIME] {func.__name__} took {cost:.4f}s")

                return result

            return wrapper

        return decorator


def init_logging(cfg) -> Logging:
    """
    用 LogConfig 原地重新配置全局 logs（各模块持有的引用保持有效）。
    """
    logs.log_dir = cfg.dir
    logs.rotation = cfg.rotation
    logs.retention = cfg.retention
    logs.level = cfg.level
    logs._configure()
    return logs


# 默认全局 logs（可被 init_logging 替换）
logs = Logging()
