"""基于 httpx 的 TransportClient 实现。

只负责一次阻塞的 POST：连接/超时错误转换为 TransportError，
状态码与正文原样返回，由会话决定如何处理非 2xx。
"""

from typing import Mapping

import httpx

from gpthing.domain.exceptions import TransportError
from gpthing.providers.base import TransportResponse


class HttpxTransport:
    """httpx 同步客户端的薄封装。"""

    name = "httpx"

    def __init__(self, timeout: float = 30.0):
        self._timeout = timeout

    def send(self, url: str, headers: Mapping[str, str], body: str) -> TransportResponse:
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                resp = client.post(url, content=body.encode("utf-8"), headers=dict(headers))
        except httpx.RequestError as e:
            raise TransportError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, url=url)
        return TransportResponse(
            ok=200 <= resp.status_code < 300,
            status_code=resp.status_code,
            text=resp.text,
        )
