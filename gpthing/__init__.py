"""gpthing 顶层包。

该包实现一个与 chat/completions 端点对话的命令行客户端：
以模板定义的人设进行连续对话，按 token 预算裁剪最早的历史，
失败时由用户决定是否重试。
"""

from gpthing.agents import ConversationSession, SessionConfig
from gpthing.prompts import PromptTemplater

__all__ = ["ConversationSession", "SessionConfig", "PromptTemplater"]
