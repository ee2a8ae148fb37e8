"""
应用配置类

使用 Pydantic 进行配置管理，支持从 YAML 配置文件加载。
配置文件默认为 config.yaml，可通过环境变量 LOCALFM_CONFIG 指定其他路径。
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from localfm.utils.exceptions import ConfigurationError
from localfm.utils.logger import apply_settings as apply_logging_settings
from localfm.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_ENV_VAR = "LOCALFM_CONFIG"


# ==================== 运行时配置模型 ====================


class RuntimeConfig(BaseModel):
    """本地模型运行时配置（OpenAI-compatible 服务端）"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api: str = Field(
        default="http://127.0.0.1:8080/v1",
        description="本地模型服务地址（llama.cpp / Ollama / LM Studio 等）",
        validation_alias=AliasChoices("api", "base_url"),
    )

    key: str = Field(
        default="",
        description="API Key（本地服务通常不需要）",
    )

    model: str = Field(
        default="local-model",
        description="模型名称",
    )

    timeout_s: float = Field(
        default=120.0,
        gt=0,
        description="单次请求超时（秒）",
    )

    max_retries: int = Field(
        default=0,
        ge=0,
        description="SDK 层面的重试次数",
    )

    supported_languages: List[str] = Field(
        default_factory=lambda: ["English"],
        description="模型支持的语言（显示名称，按顺序）",
    )

    flatten_history: bool = Field(
        default=False,
        description="将多轮历史拼接为单条提示（用于不支持多轮 chat 模板的服务端）",
    )


# ==================== 生成参数配置模型 ====================


class GenerationConfig(BaseModel):
    """生成默认参数"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    temperature: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="默认温度（为空或 0 表示使用运行时默认值）",
    )

    max_tokens: Optional[int] = Field(
        default=None,
        ge=0,
        description="默认最大生成 tokens（为空或 0 表示不限制）",
    )

    check_availability: bool = Field(
        default=True,
        description="每次调用前是否先检查模型可用性",
    )


class Settings(BaseModel):
    """应用程序配置类（基于 YAML）"""

    runtime: RuntimeConfig = Field(
        default_factory=RuntimeConfig,
        description="运行时配置",
    )

    generation: GenerationConfig = Field(
        default_factory=GenerationConfig,
        description="生成参数",
    )

    # 日志配置
    log_level: str = Field(
        default="INFO",
        description="日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）",
    )
    log_dir: str = Field(
        default="logs",
        description="日志输出目录",
    )
    log_to_file: bool = Field(
        default=False,
        description="是否输出到日志文件",
    )
    log_rotation: str = Field(
        default="20 MB",
        description="日志轮转条件（loguru 兼容格式，如 '20 MB' 或 '1 week'）",
    )
    log_retention: str = Field(
        default="7 days",
        description="日志保留时间（loguru 兼容格式）",
    )
    log_json: bool = Field(
        default=False,
        description="是否额外输出 JSON 行格式日志",
    )

    @property
    def model_name(self) -> str:
        return self.runtime.model

    @classmethod
    def from_yaml(cls, config_path: str = DEFAULT_CONFIG_PATH) -> "Settings":
        """
        从 YAML 文件加载配置

        Raises:
            FileNotFoundError: 如果配置文件不存在
            ConfigurationError: 如果配置文件格式或取值错误
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_file}")

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"配置文件格式错误: {e}", {"path": str(config_file)}) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                "配置文件必须为 YAML mapping/object", {"path": str(config_file)}
            )
        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "Settings":
        """从 dict 加载配置，大写段名（Runtime/Generation）与小写均可。"""
        settings_kwargs: Dict[str, Any] = {}
        runtime_config = config_data.get("Runtime", config_data.get("runtime"))
        if runtime_config:
            settings_kwargs["runtime"] = runtime_config
        generation_config = config_data.get("Generation", config_data.get("generation"))
        if generation_config:
            settings_kwargs["generation"] = generation_config

        for key in (
            "log_level",
            "log_dir",
            "log_to_file",
            "log_rotation",
            "log_retention",
            "log_json",
        ):
            if config_data.get(key) is not None:
                settings_kwargs[key] = config_data[key]

        try:
            return cls(**settings_kwargs)
        except ValidationError as e:
            raise ConfigurationError(f"配置取值错误: {e}") from e

    def to_yaml(self, output_path: str) -> None:
        """将当前配置保存为 YAML 文件"""
        config_dict = {
            "Runtime": self.runtime.model_dump(exclude_none=True),
            "Generation": self.generation.model_dump(exclude_none=True),
            "log_level": self.log_level,
            "log_dir": self.log_dir,
            "log_to_file": self.log_to_file,
            "log_rotation": self.log_rotation,
            "log_retention": self.log_retention,
            "log_json": self.log_json,
        }
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_dict, f, allow_unicode=True, sort_keys=False)


# ==================== 配置加载 ====================


_settings_cache: Optional[Settings] = None
_settings_cache_key: Optional[tuple[str, int | None]] = None


def load_settings(config_path: Optional[str] = None, use_cache: bool = True) -> Settings:
    """
    加载配置（带缓存）

    Args:
        config_path: 配置文件路径（默认读取 LOCALFM_CONFIG，其次 config.yaml）
        use_cache: 文件未变化时复用上次的结果

    Returns:
        Settings: 配置实例；文件不存在时返回默认配置
    """
    global _settings_cache, _settings_cache_key

    path = Path(config_path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    try:
        mtime: int | None = path.stat().st_mtime_ns
    except FileNotFoundError:
        mtime = None

    cache_key = (str(path), mtime)
    if use_cache and _settings_cache is not None and _settings_cache_key == cache_key:
        logger.debug(f"配置缓存命中: {path}")
        return _settings_cache

    if mtime is None:
        logger.warning(f"配置文件不存在: {path}，将使用默认配置。")
        settings_instance = Settings()
    else:
        settings_instance = Settings.from_yaml(str(path))

    apply_logging_settings(settings_instance)

    if use_cache:
        _settings_cache = settings_instance
        _settings_cache_key = cache_key

    return settings_instance
