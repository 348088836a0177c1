"""会话核心依赖的外部协作者协议。

ConversationSession 不直接依赖具体的 HTTP 库或分词库，而是依赖这里的协议：

- Tokenizer: 只用 encode 结果的长度估算 token 数。
- TransportClient: 执行一次阻塞的 POST，返回状态与响应正文。

这样测试中可以替换为假的实现，无需网络或模型文件。
"""

from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence


class Tokenizer(Protocol):
    """BPE 兼容的分词器。具体 token id 无关紧要，只关心数量。"""

    def encode(self, text: str) -> Sequence[int]:
        ...


@dataclass(frozen=True)
class TransportResponse:
    """一次 HTTP 交换的结果。"""

    ok: bool
    status_code: int
    text: str


class TransportClient(Protocol):
    """HTTP 传输协议。

    实现者在连接失败、超时等情况下抛出 TransportError；
    非 2xx 状态码不抛异常，通过 ok=False 返回。
    """

    def send(self, url: str, headers: Mapping[str, str], body: str) -> TransportResponse:
        ...
