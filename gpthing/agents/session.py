"""会话引擎核心模块。

实现消息历史维护、token 预算裁剪、请求构造、调用端点与失败重试等核心逻辑。
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4
import logging
import time

from gpthing.config.settings import (
    DEFAULT_PERSONA_NAME,
    DEFAULT_PROMPT_TEMPLATE,
    DEFAULT_SYS_PROMPT_TEMPLATE,
    DEFAULT_USER_NAME,
)
from gpthing.domain.exceptions import (
    BusinessError,
    ConfigurationError,
    MalformedResponse,
    TransportError,
    UpstreamError,
)
from gpthing.domain.models import ChatMessage, ChatRequest, SessionParameters
from gpthing.infrastructure.logging.logger import logger
from gpthing.infrastructure.tokenizers import TiktokenTokenizer
from gpthing.prompts import PromptTemplater
from gpthing.providers.base import Tokenizer, TransportClient
from gpthing.providers.httpx_transport import HttpxTransport
from gpthing.providers.openai_chat import build_headers, chat_url, decode_response, serialize_request
from gpthing.providers.registry import DEFAULT_MODEL, OPENAI_CONFIG, default_ceiling

# 用户决定失败后是否重发同一请求
RetryDecider = Callable[[BusinessError], bool]


def _never_retry(error: BusinessError) -> bool:
    return False


@dataclass(frozen=True)
class SessionConfig:
    """构造会话时使用的不可变默认值。"""

    model: str = DEFAULT_MODEL
    base_url: str = OPENAI_CONFIG.base_url
    context_ceiling: int = default_ceiling(DEFAULT_MODEL)  # 4096 * 2 / 3
    safety_margin: int = 350  # 本地分词与远端分词之间的误差预留
    persona_name: str = DEFAULT_PERSONA_NAME
    user_name: str = DEFAULT_USER_NAME
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    sys_prompt_template: str = DEFAULT_SYS_PROMPT_TEMPLATE
    max_tokens: int = 512
    temperature: float = 1.06
    top_p: float = 1.0
    frequency_penalty: float = 1.0
    presence_penalty: float = 1.0
    http_timeout: float = 100.0
    tokenizer_encoding: str = "cl100k_base"
    debug: bool = False

    @classmethod
    def from_settings(cls, settings) -> "SessionConfig":
        return cls(
            model=settings.model,
            base_url=settings.openai_base_url,
            context_ceiling=settings.effective_ceiling,
            safety_margin=settings.safety_margin,
            persona_name=settings.persona_name,
            user_name=settings.user_name,
            prompt_template=settings.prompt_template,
            sys_prompt_template=settings.sys_prompt_template,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            top_p=settings.top_p,
            frequency_penalty=settings.frequency_penalty,
            presence_penalty=settings.presence_penalty,
            http_timeout=settings.http_timeout,
            tokenizer_encoding=settings.tokenizer_encoding,
            debug=settings.debug,
        )


class ConversationSession:
    """单个对话的上下文管理器。

    - history[0] 始终是当前的 system 消息，预算裁剪永远不会删除它。
    - 同一时间只处理一轮；调用方不得并发调用 post。
    """

    def __init__(
        self,
        api_key: Optional[str],
        prompt_template: Optional[str] = None,
        sys_prompt_template: Optional[str] = None,
        persona_name: Optional[str] = None,
        user_name: Optional[str] = None,
        *,
        config: Optional[SessionConfig] = None,
        tokenizer: Optional[Tokenizer] = None,
        transport: Optional[TransportClient] = None,
        retry_decider: Optional[RetryDecider] = None,
        templater: Optional[PromptTemplater] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                code="MISSING_API_KEY",
                message="An API Key must be provided either in the configuration file or on the command line.",
            )
        self._api_key = api_key
        self._config = config or SessionConfig()
        self._params = SessionParameters(
            persona_name=persona_name or self._config.persona_name,
            user_name=user_name or self._config.user_name,
            prompt_template=prompt_template if prompt_template is not None else self._config.prompt_template,
            sys_prompt_template=(
                sys_prompt_template if sys_prompt_template is not None else self._config.sys_prompt_template
            ),
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
            top_p=self._config.top_p,
            frequency_penalty=self._config.frequency_penalty,
            presence_penalty=self._config.presence_penalty,
        )
        self._tokenizer = tokenizer or TiktokenTokenizer(self._config.tokenizer_encoding)
        self._transport = transport or HttpxTransport(timeout=self._config.http_timeout)
        self._retry_decider = retry_decider or _never_retry
        self._templater = templater or PromptTemplater()
        self._log_ctx: Dict[str, Any] = {"session_id": f"s-{uuid4().hex}", "model": self._config.model}

        self._turn_template = ""
        self._turn_names: Dict[str, Optional[str]] = {}
        self._system_prompt = ""
        self._history: List[ChatMessage] = []
        self._resolve_templates()
        self._history.append(ChatMessage(role="system", content=self._system_prompt))
        self._log(logging.INFO, "Created session", persona=self._params.persona_name)

    # ---- 只读视图 ----

    @property
    def history(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._history)

    @property
    def params(self) -> SessionParameters:
        return self._params

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    # ---- 对外操作 ----

    def post(self, user_text: str) -> str:
        """发送一轮用户输入并返回助手回复。

        失败且调用方不重试时返回空字符串；此时历史中只多了本轮的用户消息。
        """

        start_time = time.time()

        # 1~2. 代入每轮模板，构造候选消息
        turn = ChatMessage(
            role="user",
            content=self._templater.apply_message(self._turn_template, user_text, self._turn_names),
        )

        # 3~4. 裁剪到预算内并序列化
        req = self._fit_to_budget(turn)
        body = serialize_request(req, indent=self._config.debug)
        logger.debug("Making request:\n%s", body)

        # 5. 历史中记录原始输入，而不是展开后的模板
        self._history.append(ChatMessage(role="user", content=user_text))

        # 6. 网络交换（失败时由调用方决定是否重试）
        raw = self._exchange(body)
        if raw is None:
            return ""
        reply = self._extract_reply(raw)
        self._history.append(ChatMessage(role="assistant", content=reply))
        self._log(
            logging.INFO,
            "Completed turn",
            elapsed_seconds=round(time.time() - start_time, 2),
            history_length=len(self._history),
        )
        return reply

    def reset(self) -> None:
        """按当前参数重新解析模板，并把历史替换为一条新的 system 消息。"""

        self._resolve_templates()
        self._history = [ChatMessage(role="system", content=self._system_prompt)]
        self._log(logging.INFO, "Reset session", persona=self._params.persona_name)

    def estimate_tokens(self, messages: List[ChatMessage]) -> int:
        text = "".join(m.content + "\n" for m in messages)
        return len(self._tokenizer.encode(text))

    # ---- 内部实现 ----

    def _resolve_templates(self) -> None:
        params = self._params
        # 每轮模板与名字在 post 时和 Message 一起单遍替换；名字只在构造和 reset 时更新
        self._turn_template = params.prompt_template
        self._turn_names = {"prompt": None, "persona": params.persona_name, "user": params.user_name}
        prompt_text = self._templater.resolve(params.prompt_template, params, prompt=None)
        self._system_prompt = self._templater.resolve(params.sys_prompt_template, params, prompt=prompt_text)

    def _fit_to_budget(self, turn: ChatMessage) -> ChatRequest:
        """从最早的非 system 消息开始删除，直到候选列表满足预算。"""

        margin = self._config.safety_margin
        limit = self._config.context_ceiling - self._params.max_tokens
        while True:
            messages = [*self._history, turn]
            tokens = self.estimate_tokens(messages)
            if tokens + margin < limit:
                self._log(logging.INFO, f"Message is {tokens} tokens in size.", tokens=tokens, limit=limit)
                break
            if len(self._history) <= 1:
                # 只剩 system 消息仍超出预算：尽力发送，不再循环
                self._log(logging.WARNING, "Over token budget with no history left", tokens=tokens, limit=limit)
                break
            evicted = self._history.pop(1)
            self._log(
                logging.INFO,
                "Evicted oldest turn",
                role=evicted.role,
                tokens=tokens,
                limit=limit,
                remaining=len(self._history),
            )
        return self._build_request(messages)

    def _build_request(self, messages: List[ChatMessage]) -> ChatRequest:
        p = self._params
        return ChatRequest(
            model=self._config.model,
            messages=messages,
            max_tokens=p.max_tokens,
            temperature=p.temperature,
            frequency_penalty=p.frequency_penalty,
            presence_penalty=p.presence_penalty,
            top_p=p.top_p,
        )

    def _send_once(self, url: str, headers: Dict[str, str], body: str) -> str:
        resp = self._transport.send(url, headers, body)
        if not resp.ok:
            raise UpstreamError(
                code="API_ERROR",
                message=f"Request failed with status code: {resp.status_code}",
                http_status=resp.status_code,
                body=resp.text,
            )
        return resp.text

    def _exchange(self, body: str) -> Optional[str]:
        """发送同一份已序列化的请求；每次失败都询问 retry_decider。"""

        url = chat_url(self._config.base_url)
        headers = build_headers(self._api_key)
        attempt = 0
        while True:
            attempt += 1
            self._log(logging.INFO, "Calling endpoint", attempt=attempt)
            try:
                return self._send_once(url, headers, body)
            except (TransportError, UpstreamError) as e:
                self._log(
                    logging.WARNING,
                    "Request failed",
                    code=e.code,
                    error=e.message,
                    http_status=e.http_status,
                    attempt=attempt,
                    body=e.extra.get("body"),
                )
                if not self._retry_decider(e):
                    self._log(logging.INFO, "Retry declined", attempt=attempt)
                    return None

    def _extract_reply(self, raw: str) -> str:
        try:
            result = decode_response(raw)
        except MalformedResponse as e:
            self._log(logging.WARNING, "Malformed response", error=e.message)
            return ""
        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        if not result.choices:
            self._log(logging.WARNING, "Response has no choices", response_id=result.id)
        return result.first_content

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload = dict(self._log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
