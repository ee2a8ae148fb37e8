"""
pytest 配置文件

提供测试所需的 fixtures 和配置
"""

import os
import tempfile
from pathlib import Path

import pytest

from localfm.client import reset_default_client


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def temp_dir():
    """创建临时目录 fixture"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_dict():
    """示例配置字典 fixture"""
    return {
        "Runtime": {
            "api": "http://127.0.0.1:11434",
            "key": "",
            "model": "llama3.2",
            "timeout_s": 30,
        },
        "Generation": {
            "temperature": 0.5,
            "max_tokens": 256,
            "check_availability": False,
        },
        "log_level": "DEBUG",
    }


@pytest.fixture
def sample_config_yaml(temp_dir, sample_config_dict):
    """创建示例配置 YAML 文件 fixture"""
    import yaml

    config_path = temp_dir / "config.yaml"
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(sample_config_dict, f)

    return config_path


@pytest.fixture(autouse=True)
def reset_environment():
    """每个测试前重置环境变量与默认客户端"""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
    reset_default_client()
