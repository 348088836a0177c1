"""统一的对话与结果数据模型。

本模块定义了会话核心与 Provider 适配层之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），创建后不可变。
- SessionParameters: 会话内可变的人设与采样参数。
- ChatRequest: 发给 chat/completions 端点的完整请求。
- ChatResult: 从响应 JSON 解析后的统一结果。

线上 JSON 与这些模型之间的转换由 providers.openai_chat 负责。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Dict, List


# 与 chat/completions 接口的 role 字段一一对应
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息。

    frozen=True：进入历史后内容永不修改，裁剪上下文时只整条删除。
    """

    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class SessionParameters:
    """会话参数，只归 ConversationSession 所有。

    修改是同步的，只影响之后发出的请求。
    """

    persona_name: str
    user_name: str
    prompt_template: str
    sys_prompt_template: str
    max_tokens: int = 512
    temperature: float = 1.06
    top_p: float = 1.0
    frequency_penalty: float = 1.0
    presence_penalty: float = 1.0


@dataclass
class ChatRequest:
    """一次完整的聊天请求，字段与线上 JSON 同名。"""

    model: str
    messages: List[ChatMessage]
    max_tokens: int
    temperature: float
    frequency_penalty: float = 1.0
    presence_penalty: float = 1.0
    top_p: float = 1.0


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（会话只读取第一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的解析结果。

    - choices: 一个或多个候选回答，可能为空。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    id: str
    object: str
    created: int
    model: str
    choices: List[ChatChoice] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def first_content(self) -> str:
        """第一条候选的文本；没有候选时返回空字符串。"""

        if not self.choices:
            return ""
        return self.choices[0].message.content or ""
