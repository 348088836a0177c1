"""Runtime commands typed during a conversation.

Lines starting with ``!`` are not sent to the model. Each recognised form has
its own parser; parsing yields a tagged :class:`Command`, and
:class:`CommandInterpreter` applies it to the session parameters. The
interpreter never touches the conversation history: ``reset`` and ``exit`` are
returned to the caller to act on.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional, Tuple, Union

from gpthing.domain.exceptions import CommandParseError
from gpthing.domain.models import SessionParameters

SENTINEL = "!"
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0

CommandKind = Literal["set_max_tokens", "set_temperature", "exit", "reset", "unknown"]


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    value: Union[int, float, None] = None
    raw: str = ""


@dataclass(frozen=True)
class CommandOutcome:
    """What happened, plus a one-line report for the user."""

    kind: CommandKind
    message: str


def _number_pattern(*names: str) -> re.Pattern:
    alts = "|".join(sorted(names, key=len, reverse=True))
    return re.compile(rf"^(?:{alts})\b\s*[=:]?\s*(?P<value>.*)$", re.IGNORECASE)


_MAX_TOKENS = _number_pattern("max", "max_tokens")
_TEMPERATURE = _number_pattern("temp", "temperature")
_EXIT = re.compile(r"^(?:exit|quit)$", re.IGNORECASE)
_RESET = re.compile(r"^reset$", re.IGNORECASE)


def is_command(line: str) -> bool:
    return line.lstrip().startswith(SENTINEL)


def _parse_max_tokens(body: str) -> Optional[Command]:
    m = _MAX_TOKENS.match(body)
    if not m:
        return None
    value = m.group("value")
    try:
        return Command("set_max_tokens", int(value), body)
    except ValueError:
        raise CommandParseError(
            code="COMMAND_PARSE_ERROR",
            message=f"'{value}' is not a valid integer for max_tokens",
            command=body,
        )


def _parse_temperature(body: str) -> Optional[Command]:
    m = _TEMPERATURE.match(body)
    if not m:
        return None
    value = m.group("value")
    try:
        number = float(value)
    except ValueError:
        number = math.nan
    if not math.isfinite(number):
        raise CommandParseError(
            code="COMMAND_PARSE_ERROR",
            message=f"'{value}' is not a valid number for temperature",
            command=body,
        )
    return Command("set_temperature", number, body)


def _parse_keyword(pattern: re.Pattern, kind: CommandKind) -> Callable[[str], Optional[Command]]:
    def parse(body: str) -> Optional[Command]:
        return Command(kind, None, body) if pattern.match(body) else None

    return parse


_PARSERS: List[Callable[[str], Optional[Command]]] = [
    _parse_max_tokens,
    _parse_temperature,
    _parse_keyword(_EXIT, "exit"),
    _parse_keyword(_RESET, "reset"),
]


def parse_command(line: str) -> Command:
    """Parse a ``!``-prefixed line.

    Raises:
        CommandParseError: a recognised command has a value that is not a number.
    """

    body = line.strip()
    if body.startswith(SENTINEL):
        body = body[len(SENTINEL):].strip()
    for parser in _PARSERS:
        command = parser(body)
        if command is not None:
            return command
    return Command("unknown", None, body)


def _clamp(value, bounds: Tuple):
    low, high = bounds
    return max(low, min(high, value))


class CommandInterpreter:
    """Applies parsed commands to :class:`SessionParameters`."""

    def __init__(self, params: SessionParameters, context_ceiling: int):
        self._params = params
        self._ceiling = context_ceiling

    def execute(self, line: str) -> CommandOutcome:
        command = parse_command(line)
        if command.kind == "set_max_tokens":
            self._params.max_tokens = _clamp(int(command.value), (0, self._ceiling))
            return CommandOutcome(command.kind, f"MaxTokens set to {self._params.max_tokens}")
        if command.kind == "set_temperature":
            self._params.temperature = _clamp(float(command.value), (MIN_TEMPERATURE, MAX_TEMPERATURE))
            return CommandOutcome(command.kind, f"Temperature set to {self._params.temperature}")
        if command.kind == "exit":
            return CommandOutcome(command.kind, "Goodbye.")
        if command.kind == "reset":
            return CommandOutcome(command.kind, "Conversation reset.")
        return CommandOutcome(command.kind, f"Unknown command: {command.raw!r}")
