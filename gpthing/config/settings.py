"""配置管理模块。

支持从 .env、config.json / config.yaml 以及环境变量加载配置。
优先级：命令行覆盖 > 环境变量 / .env > 配置文件 > 默认值。

Settings 是不可变对象，由控制台入口加载一次后显式传给会话，
不存在进程级的可变全局配置。
"""

import json
import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gpthing.domain.exceptions import ConfigurationError
from gpthing.providers.registry import DEFAULT_MODEL, OPENAI_CONFIG, default_ceiling

DEFAULT_PERSONA_NAME = "Emily"
DEFAULT_USER_NAME = "User"
DEFAULT_PROMPT_TEMPLATE = "(Reply as $GirlName, in character, speaking to $UserName.)\n${Message}"
DEFAULT_SYS_PROMPT_TEMPLATE = (
    "Act like you are a human girl named $GirlName having a casual conversation "
    "with $UserName. Never mention that you are an AI."
)

CONFIG_FILE_ENV = "GPTHING_CONFIG_FILE"

# 原始 config.json 使用的键名 -> Settings 字段名
_LEGACY_KEYS = {
    "apikey": "openai_api_key",
    "key": "openai_api_key",
    "name": "persona_name",
    "girlname": "persona_name",
    "yourname": "user_name",
    "username": "user_name",
    "prompt": "prompt_template",
    "sysprompt": "sys_prompt_template",
    "maxtokens": "max_tokens",
    "temperature": "temperature",
    "debug": "debug",
}


def _config_candidates(explicit: Optional[str]) -> list[Path]:
    candidates = []
    if explicit:
        candidates.append(Path(explicit).expanduser())
    from_env = os.getenv(CONFIG_FILE_ENV)
    if from_env:
        candidates.append(Path(from_env).expanduser())
    candidates.extend([
        Path.cwd() / "config.json",
        Path.cwd() / "config.yaml",
    ])
    return candidates


def load_config_file(explicit: Optional[str] = None) -> Dict[str, Any]:
    """读取第一个存在的配置文件（JSON 或 YAML），返回规范化后的字段字典。"""

    seen: set[Path] = set()
    for path in _config_candidates(explicit):
        if path in seen:
            continue
        seen.add(path)
        if not path.exists():
            if explicit and path == Path(explicit).expanduser():
                warnings.warn(f"Config file {path} not found, ignored")
            continue
        try:
            text = path.read_text(encoding="utf-8")
            data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
            continue
        if not isinstance(data, dict):
            warnings.warn(f"Config file {path} is not a mapping, ignored")
            continue
        return normalise_keys(data)
    return {}


def normalise_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """兼容原始 config.json 的 PascalCase 键名，忽略值为 None 的项。"""

    fields = Settings.model_fields
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        k = str(key).strip()
        if k.lower() in fields:
            out[k.lower()] = value
            continue
        mapped = _LEGACY_KEYS.get(k.lower().replace("_", ""))
        if mapped:
            out[mapped] = value
        else:
            warnings.warn(f"Unknown config key {key!r}, ignored")
    return out


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default=OPENAI_CONFIG.base_url, description="OpenAI API 基础URL")
    model: str = Field(default=DEFAULT_MODEL, description="chat/completions 使用的模型名")
    http_timeout: float = Field(default=100.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 人设与模板 ----
    persona_name: str = Field(default=DEFAULT_PERSONA_NAME, description="模型扮演的人物名字")
    user_name: str = Field(default=DEFAULT_USER_NAME, description="用户的名字")
    prompt_template: str = Field(default=DEFAULT_PROMPT_TEMPLATE, description="每条消息使用的模板")
    sys_prompt_template: str = Field(default=DEFAULT_SYS_PROMPT_TEMPLATE, description="系统提示词模板")

    # ---- 采样参数 ----
    max_tokens: int = Field(default=512, ge=0, description="单条回复的最大 token 数")
    temperature: float = Field(default=1.06, ge=0.0, le=2.0, description="生成温度")
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=1.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=1.0, ge=-2.0, le=2.0)

    # ---- 上下文预算 ----
    context_ceiling: Optional[int] = Field(
        default=None,
        ge=1,
        description="历史 + 预期输出的 token 上限；为空时按模型上下文窗口的 2/3 计算",
    )
    safety_margin: int = Field(default=350, ge=0, description="本地与远端分词误差的预留 token 数")
    tokenizer_encoding: str = Field(default="cl100k_base", description="tiktoken 编码名")

    # ---- 日志与记录 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")
    transcript_dir: str = Field(default="transcripts", description="对话记录目录，为空则不记录")
    debug: bool = Field(default=False, description="调试模式，打印完整请求")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("openai_api_key")
    @classmethod
    def strip_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None

    @property
    def effective_ceiling(self) -> int:
        return self.context_ceiling or default_ceiling(self.model)


def load_settings(config_file: Optional[str] = None, **overrides: Any) -> Settings:
    """加载配置。

    Args:
        config_file: 显式指定的配置文件路径（可选）。
        **overrides: 命令行覆盖项，值为 None 的项被忽略。

    Raises:
        ConfigurationError: 任一来源的取值不合法（超出范围、类型不对）。
    """

    file_values = load_config_file(config_file)
    cli_values = {k: v for k, v in overrides.items() if v is not None}
    try:
        from_env = Settings()
        explicit = from_env.model_dump(include=from_env.model_fields_set)
        return Settings(**{**file_values, **explicit, **cli_values})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(code="INVALID_SETTINGS", message=f"Invalid configuration: {problems}") from e
