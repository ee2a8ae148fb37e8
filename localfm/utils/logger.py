"""
日志工具模块

目标：
- 控制台 + 文件双通道输出，文件自动轮转与保留
- 标准库 logging（openai/httpx 等三方库）统一转发到 loguru
- 支持上下文绑定（如 request_id/model），方便跨线程/协程排查

库被导入时不会主动创建日志文件；需要文件输出时调用 `setup_logger()`，
或通过 `load_settings()` -> `apply_settings()` 按配置初始化。
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger as loguru_logger

DEFAULT_LEVEL = os.getenv("LOCALFM_LOG_LEVEL", "INFO")
DEFAULT_LOG_DIR = Path(os.getenv("LOCALFM_LOG_DIR", "logs"))
DEFAULT_LOG_FILE = os.getenv("LOCALFM_LOG_FILE", "localfm.log")
DEFAULT_JSON_FILE = os.getenv("LOCALFM_JSON_LOG_FILE", "localfm.jsonl")
DEFAULT_ROTATION = os.getenv("LOCALFM_LOG_ROTATION", "20 MB")
DEFAULT_RETENTION = os.getenv("LOCALFM_LOG_RETENTION", "7 days")
DEFAULT_QUIET_LIBS = ["httpx", "httpcore", "openai", "asyncio", "urllib3"]
DEFAULT_QUIET_LEVEL = os.getenv("LOCALFM_LOG_QUIET_LEVEL", "WARNING")

LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("localfm_log_context", default={})
_loguru_base = None
_current_config: "LoggerConfig" | None = None


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() not in {"0", "false", "no", "off"}


@dataclass
class LoggerConfig:
    """日志配置容器"""

    level: str = DEFAULT_LEVEL
    log_dir: Path = DEFAULT_LOG_DIR
    log_file: str = DEFAULT_LOG_FILE
    json_file: str = DEFAULT_JSON_FILE
    rotation: str = DEFAULT_ROTATION
    retention: str = DEFAULT_RETENTION
    log_to_file: bool = _env_flag("LOCALFM_LOG_TO_FILE", True)
    enable_json: bool = _env_flag("LOCALFM_LOG_JSON", False)
    colorize: bool = _env_flag("LOCALFM_LOG_COLOR", True)
    enqueue: bool = _env_flag("LOCALFM_LOG_ENQUEUE", False)
    backtrace: bool = _env_flag("LOCALFM_LOG_BACKTRACE", False)
    diagnose: bool = _env_flag("LOCALFM_LOG_DIAGNOSE", False)
    extra: Dict[str, Any] = field(default_factory=dict)
    quiet_libs: List[str] = field(default_factory=lambda: list(DEFAULT_QUIET_LIBS))
    quiet_level: str = DEFAULT_QUIET_LEVEL

    def normalized_level(self) -> str:
        return str(self.level).upper()


class _InterceptHandler(logging.Handler):
    """把标准 logging 流量引导到 loguru，保证日志口径统一"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 0
        while frame:
            filename = frame.f_code.co_filename
            is_logging = filename == logging.__file__
            is_frozen = "importlib" in filename and "_bootstrap" in filename
            if depth > 0 and not (is_logging or is_frozen):
                break
            frame = frame.f_back
            depth += 1

        target = _loguru_base or loguru_logger.patch(_inject_context)
        target.bind(logger_name=record.name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _format_context(context: Dict[str, Any]) -> str:
    if not context:
        return ""
    return " ".join(f"{k}={v}" for k, v in context.items())


def _inject_context(record: Dict[str, Any]) -> None:
    context = LOG_CONTEXT.get({})
    extra = record["extra"]
    extra.setdefault("context", dict(context))
    extra.setdefault("context_str", _format_context(extra["context"]))
    extra.setdefault("logger_name", record.get("name") or "localfm")


def _merge_config(config: Optional[LoggerConfig], overrides: Dict[str, Any]) -> LoggerConfig:
    base = config or _current_config or LoggerConfig()
    merged = {**base.__dict__, **{k: v for k, v in overrides.items() if v is not None}}
    merged["log_dir"] = Path(merged["log_dir"])
    merged["level"] = str(merged["level"]).upper()
    merged["quiet_level"] = str(merged.get("quiet_level", DEFAULT_QUIET_LEVEL)).upper()
    if overrides.get("quiet_libs") is not None:
        merged["quiet_libs"] = list(overrides["quiet_libs"])
    return LoggerConfig(**merged)


def setup_logger(config: Optional[LoggerConfig] = None, **overrides: Any):
    """
    初始化/重置日志系统，可重复调用以应用新配置

    Returns:
        绑定了 logger_name="localfm" 的 loguru logger
    """
    global _loguru_base, _current_config

    cfg = _merge_config(config, overrides)
    _current_config = cfg

    loguru_logger.remove()
    loguru_logger.configure(patcher=_inject_context)
    _loguru_base = loguru_logger.bind(app="localfm", **cfg.extra)

    _loguru_base.add(
        sys.stderr,
        level=cfg.normalized_level(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[logger_name]}</cyan> | "
            "<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level> {extra[context_str]}"
        ),
        colorize=cfg.colorize,
        enqueue=cfg.enqueue,
        backtrace=cfg.backtrace,
        diagnose=cfg.diagnose,
    )

    if cfg.log_to_file:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        _loguru_base.add(
            cfg.log_dir / cfg.log_file,
            level=cfg.normalized_level(),
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
                "{extra[logger_name]} | {function}:{line} | {message} {extra[context_str]}"
            ),
            rotation=cfg.rotation,
            retention=cfg.retention,
            encoding="utf-8",
            enqueue=cfg.enqueue,
            backtrace=cfg.backtrace,
            diagnose=cfg.diagnose,
        )

        if cfg.enable_json:
            _loguru_base.add(
                cfg.log_dir / cfg.json_file,
                level=cfg.normalized_level(),
                rotation=cfg.rotation,
                retention=cfg.retention,
                encoding="utf-8",
                enqueue=cfg.enqueue,
                serialize=True,
            )

    logging.basicConfig(
        handlers=[_InterceptHandler()],
        level=getattr(logging, cfg.normalized_level(), logging.INFO),
        force=True,
    )
    set_library_log_levels({name: cfg.quiet_level for name in cfg.quiet_libs})
    return _loguru_base.bind(logger_name="localfm")


def apply_settings(settings: Any) -> None:
    """根据 Settings 实例刷新日志配置"""
    setup_logger(
        level=getattr(settings, "log_level", DEFAULT_LEVEL),
        log_dir=Path(getattr(settings, "log_dir", DEFAULT_LOG_DIR)),
        rotation=getattr(settings, "log_rotation", DEFAULT_ROTATION),
        retention=getattr(settings, "log_retention", DEFAULT_RETENTION),
        log_to_file=getattr(settings, "log_to_file", None),
        enable_json=getattr(settings, "log_json", None),
    )


def set_log_level(level: str) -> None:
    """运行时调整日志级别"""
    setup_logger(level=level)


def set_library_log_levels(level_map: Dict[str, str], default_level: Optional[str] = None) -> None:
    """
    批量设置第三方库日志级别，减少噪声

    Args:
        level_map: 名称 -> 级别 映射
        default_level: 未在映射中的默认级别（可选）
    """
    for name, level in level_map.items():
        logging.getLogger(name).setLevel(level)
    if default_level:
        logging.getLogger().setLevel(default_level)


def bind_context(**kwargs: Any) -> None:
    """绑定全局上下文，适用于跨线程/协程"""
    updated = LOG_CONTEXT.get({}).copy()
    updated.update(kwargs)
    LOG_CONTEXT.set(updated)


@contextmanager
def log_context(**kwargs: Any):
    """上下文管理器版的 bind_context"""
    token = LOG_CONTEXT.set({**LOG_CONTEXT.get({}), **kwargs})
    try:
        yield
    finally:
        LOG_CONTEXT.reset(token)


def clear_context() -> None:
    """清理已绑定的上下文"""
    LOG_CONTEXT.set({})


def get_logger(name: str) -> Any:
    """获取带模块名的 logger"""
    if _loguru_base is not None:
        return _loguru_base.bind(logger_name=name)
    return loguru_logger.bind(logger_name=name).patch(_inject_context)


__all__ = [
    "LoggerConfig",
    "apply_settings",
    "bind_context",
    "clear_context",
    "get_logger",
    "log_context",
    "set_library_log_levels",
    "set_log_level",
    "setup_logger",
]
