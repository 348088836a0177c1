"""OpenAI chat/completions 线上格式转换。

- 请求: {model, messages, max_tokens, temperature, frequency_penalty, presence_penalty, top_p}
- 响应: {id, object, created, model, usage, choices[{index, message, finish_reason}]}

会话只读取 choices[0].message.content，其余字段保留在 ChatResult 中便于日志记录。
"""

import json
from typing import Any, Dict, Mapping

from gpthing.domain.exceptions import MalformedResponse
from gpthing.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage


def chat_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/chat/completions"


def build_headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def build_payload(req: ChatRequest) -> Dict[str, Any]:
    return {
        "model": req.model,
        "messages": [m.to_payload() for m in req.messages],
        "max_tokens": req.max_tokens,
        "temperature": req.temperature,
        "frequency_penalty": req.frequency_penalty,
        "presence_penalty": req.presence_penalty,
        "top_p": req.top_p,
    }


def serialize_request(req: ChatRequest, indent: bool = False) -> str:
    """把请求序列化为 JSON 文本；debug 模式下缩进便于阅读。"""

    return json.dumps(build_payload(req), ensure_ascii=False, indent=2 if indent else None)


def parse_response(data: Any) -> ChatResult:
    """把响应 JSON 解析为 ChatResult。

    缺少 choices 时返回空列表；结构明显不对（非对象、choices 非数组、
    message/usage 非对象、content 非字符串）时
    抛出 MalformedResponse，由上层降级处理。
    """

    if not isinstance(data, Mapping):
        raise MalformedResponse(code="MALFORMED_RESPONSE", message="response is not a JSON object")
    raw_choices = data.get("choices") or []
    if not isinstance(raw_choices, list):
        raise MalformedResponse(code="MALFORMED_RESPONSE", message="'choices' is not a list")

    choices: list[ChatChoice] = []
    for i, ch in enumerate(raw_choices):
        if not isinstance(ch, Mapping):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"choice {i} is not an object")
        msg = ch.get("message") or {}
        if not isinstance(msg, Mapping):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"choice {i} message is not an object")
        content = msg.get("content") or ""
        if not isinstance(content, str):
            raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"choice {i} content is not a string")
        choices.append(
            ChatChoice(
                index=ch.get("index", i),
                message=ChatMessage(role=msg.get("role") or "assistant", content=content),
                finish_reason=ch.get("finish_reason"),
            )
        )

    usage = None
    usage_raw = data.get("usage") or {}
    if not isinstance(usage_raw, Mapping):
        raise MalformedResponse(code="MALFORMED_RESPONSE", message="'usage' is not an object")
    if usage_raw:
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
    return ChatResult(
        id=data.get("id") or "",
        object=data.get("object") or "",
        created=data.get("created") or 0,
        model=data.get("model") or "",
        choices=choices,
        usage=usage,
        raw=dict(data),
    )


def decode_response(text: str) -> ChatResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(code="MALFORMED_RESPONSE", message=f"invalid JSON: {e}")
    return parse_response(data)
