"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在控制台层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 相关的 HTTP 状态码，默认 400。
        extra: 其他补充字段（例如 body、command 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """配置缺失或无效（例如没有 API Key），启动阶段即终止。"""


class TransportError(BusinessError):
    """网络层错误，例如连接失败、超时等。可由用户决定是否重试。"""


class UpstreamError(BusinessError):
    """端点返回非成功状态码。extra["body"] 保存响应正文用于诊断。"""


class MalformedResponse(BusinessError):
    """响应缺少预期字段。会话将其降级为空回复，不会中断对话循环。"""


class CommandParseError(BusinessError):
    """运行时命令的数值参数无法解析。"""
