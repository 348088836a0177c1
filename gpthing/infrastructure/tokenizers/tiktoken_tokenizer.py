"""基于 tiktoken 的 Tokenizer 实现。

cl100k_base 与 gpt-3.5-turbo / gpt-4 系列一致，用于本地估算 token 数。
"""

from typing import List, Optional

import tiktoken

from gpthing.domain.exceptions import ConfigurationError

DEFAULT_ENCODING = "cl100k_base"


class TiktokenTokenizer:
    """按编码名或模型名加载 tiktoken 编码。"""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING, model: Optional[str] = None):
        try:
            if model:
                self._encoding = tiktoken.encoding_for_model(model)
            else:
                self._encoding = tiktoken.get_encoding(encoding_name)
        except (KeyError, ValueError) as e:
            raise ConfigurationError(
                code="TOKENIZER_ERROR",
                message=f"cannot load tokenizer encoding: {e}",
                encoding=encoding_name,
                model=model,
            )

    @property
    def name(self) -> str:
        return self._encoding.name

    def encode(self, text: str) -> List[int]:
        # 用户输入里可能出现 <|endoftext|> 之类的特殊标记，按普通文本计数
        return self._encoding.encode(text, disallowed_special=())
