"""领域层模型与异常。

包含：
- models: ChatMessage / SessionParameters / ChatRequest / ChatResult 模型。
- exceptions: 业务异常类型定义。
"""
