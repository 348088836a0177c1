"""提示词模板占位符解析。

支持三种写法（不区分大小写）：

- ``$Name``
- ``${Name}``
- 裸词 ``Name``（按单词边界匹配）

可识别的名字：

- Prompt: 每条消息使用的提示词模板
- GirlName / PersonaName: 人设名字（旧写法 ``$NAME`` 只支持带 $ 的形式）
- UserName / YourName: 用户名字
- Message: 本轮用户输入（只支持带 $ 的形式，避免替换正文里的 "message"）

替换是单遍、非递归的：替换进去的值不会再被扫描。``\\$`` 转义一次出现；
未知占位符原样保留，不抛出任何错误。
"""

import re
from collections import Counter
from typing import Dict, Mapping, Optional, Tuple

from gpthing.domain.models import SessionParameters

_PLACEHOLDER = re.compile(
    r"(?P<escape>\\)?\$(?:\{(?P<braced>[A-Za-z_]\w*)\}|(?P<sigil>[A-Za-z_]\w*))"
    r"|(?<![\w$])(?P<bare>[A-Za-z_]\w*)\b"
)

# 名字 -> SessionParameters 中的字段
_ALIASES: Dict[str, str] = {
    "prompt": "prompt",
    "girlname": "persona",
    "personaname": "persona",
    "name": "persona",
    "username": "user",
    "yourname": "user",
    "message": "message",
}
_BARE_ALLOWED = frozenset({"prompt", "girlname", "personaname", "username", "yourname"})


class PromptTemplater:
    """把模板中的占位符替换为当前参数值。"""

    def resolve(
        self,
        template: str,
        params: SessionParameters,
        *,
        keep_escapes: bool = False,
        **overrides: Optional[str],
    ) -> str:
        """解析 Prompt / 人设名 / 用户名占位符。

        Args:
            template: 模板文本。
            params: 当前会话参数。
            keep_escapes: 为 True 时保留 ``\\$`` 转义原样，供后续再做一遍替换。
            **overrides: 覆盖某个占位符的值，如 ``prompt=...``、``message=...``；
                值为 None 表示该占位符本次不替换。
        """

        values: Dict[str, Optional[str]] = {
            "prompt": params.prompt_template,
            "persona": params.persona_name,
            "user": params.user_name,
        }
        for key, value in overrides.items():
            values[_ALIASES.get(key.lower(), key.lower())] = value
        text, _ = self.substitute(template, values, keep_escapes=keep_escapes)
        return text

    def apply_message(
        self,
        template: str,
        message: str,
        names: Optional[Mapping[str, Optional[str]]] = None,
    ) -> str:
        """把用户输入代入 ``$Message``；模板中没有该占位符时退化为 模板 + 换行 + 输入。

        names 中的人设名、用户名与 Message 在同一遍中替换，替换进去的名字不会再被扫描。
        """

        values: Dict[str, Optional[str]] = dict(names or {})
        values["message"] = message
        text, hits = self.substitute(template, values)
        if hits["message"] == 0:
            return f"{text}\n{message}"
        return text

    @staticmethod
    def substitute(
        template: str,
        values: Mapping[str, Optional[str]],
        *,
        keep_escapes: bool = False,
    ) -> Tuple[str, Counter]:
        """单遍替换，返回 (结果, 每个目标名的替换次数)。values 的键为 _ALIASES 的目标名。"""

        hits: Counter = Counter()

        def _replace(m: re.Match) -> str:
            raw = m.group(0)
            bare = m.group("bare")
            if bare is not None:
                key = bare.lower()
                if key not in _BARE_ALLOWED:
                    return raw
                target = _ALIASES[key]
                value = values.get(target)
                if value is None:
                    return raw
                hits[target] += 1
                return value

            key = (m.group("braced") or m.group("sigil")).lower()
            target = _ALIASES.get(key)
            if target is None:
                return raw
            if m.group("escape"):
                return raw if keep_escapes else raw[1:]
            value = values.get(target)
            if value is None:
                return raw
            hits[target] += 1
            return value

        return _PLACEHOLDER.sub(_replace, template), hits
