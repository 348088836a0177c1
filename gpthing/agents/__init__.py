"""会话引擎与运行时命令。"""

from gpthing.agents.commands import CommandInterpreter, is_command, parse_command
from gpthing.agents.session import ConversationSession, SessionConfig

__all__ = ["CommandInterpreter", "ConversationSession", "SessionConfig", "is_command", "parse_command"]
