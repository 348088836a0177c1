"""Provider 与模型配置。

集中记录每个模型的上下文窗口大小。会话的 token 预算上限依赖模型，
默认取上下文窗口的 2/3，剩余部分留给本地与远端分词之间的误差。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass(frozen=True)
class ModelConfig:
    """单个模型的配置。"""

    logical_name: str
    provider_model: str
    context_window: int
    max_tokens: int
    default_temperature: float


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models={
        "gpt-3.5-turbo": ModelConfig(
            logical_name="gpt-3.5-turbo",
            provider_model="gpt-3.5-turbo",
            context_window=4096,
            max_tokens=512,
            default_temperature=1.06,
        ),
        "gpt-4": ModelConfig(
            logical_name="gpt-4",
            provider_model="gpt-4",
            context_window=8192,
            max_tokens=512,
            default_temperature=1.0,
        ),
        "gpt-4o-mini": ModelConfig(
            logical_name="gpt-4o-mini",
            provider_model="gpt-4o-mini",
            context_window=128000,
            max_tokens=1024,
            default_temperature=1.0,
        ),
    },
)

DEFAULT_MODEL = "gpt-3.5-turbo"

PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
}


def get_model_config(name: str) -> ModelConfig:
    """根据名称获取 ModelConfig，名称不区分大小写。"""

    key = name.lower()
    for provider in PROVIDER_REGISTRY.values():
        for k, cfg in provider.models.items():
            if k.lower() == key:
                return cfg
    raise KeyError(f"Unknown model: {name!r}")


def default_ceiling(model: str) -> int:
    """模型的默认 token 预算上限（上下文窗口的 2/3）。

    未登记的模型按 DEFAULT_MODEL 处理。
    """

    try:
        cfg = get_model_config(model)
    except KeyError:
        cfg = get_model_config(DEFAULT_MODEL)
    return cfg.context_window * 2 // 3
