"""提示词模板工具。

人设与每条消息的提示词都由用户以模板形式提供（命令行、配置文件或默认值），
由 PromptTemplater 代入当前的人设名、用户名和提示词文本。
"""

from gpthing.prompts.templater import PromptTemplater

__all__ = ["PromptTemplater"]
