"""LLM Provider 集成层。

该包下的模块负责：
- 定义会话依赖的协作者协议 (base)。
- 维护模型配置与上下文窗口 (registry)。
- chat/completions 线上格式转换 (openai_chat)。
- 基于 httpx 的传输实现 (httpx_transport)。
"""

from gpthing.providers.base import Tokenizer, TransportClient, TransportResponse
from gpthing.providers.httpx_transport import HttpxTransport

__all__ = ["Tokenizer", "TransportClient", "TransportResponse", "HttpxTransport"]
