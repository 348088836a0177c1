"""Interactive console loop.

Reads messages from the terminal, sends them through a ConversationSession and
prints the replies. A line ending in a backslash continues on the next line.
Lines starting with ``!`` are runtime commands (see agents.commands).
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm

from gpthing.agents.commands import CommandInterpreter, is_command
from gpthing.agents.session import ConversationSession, RetryDecider, SessionConfig
from gpthing.config.settings import Settings, load_settings
from gpthing.console.args import parse_args, settings_overrides
from gpthing.domain.exceptions import BusinessError, CommandParseError, ConfigurationError, UpstreamError
from gpthing.infrastructure.logging.logger import logger, setup_logger
from gpthing.infrastructure.storage.transcript import NOTE_SPEAKER, TranscriptWriter

ReadLine = Callable[[], str]


def read_message(read_line: ReadLine) -> Optional[str]:
    """Read one message; returns None at end of input.

    Empty lines are skipped. A trailing backslash is replaced by a newline and
    the next line is appended.
    """

    text = ""
    while True:
        try:
            line = read_line()
        except EOFError:
            return text or None
        line = line.rstrip("\r\n")
        if line.endswith("\\"):
            text += line[:-1] + "\n"
            continue
        text += line
        if text:
            return text


def make_retry_decider(console: Console) -> RetryDecider:
    def decide(error: BusinessError) -> bool:
        if isinstance(error, UpstreamError) and error.extra.get("body"):
            console.print(error.extra["body"], style="dim", markup=False, highlight=False)
        console.print(f"[red]{error.message}[/red]")
        try:
            return Confirm.ask("Try again?", console=console, default=True)
        except EOFError:
            return False

    return decide


def _transcript_failed(err_console: Console, error: BusinessError) -> None:
    logger.warning("Transcript disabled", extra={"extra": {"code": error.code, "error": error.message}})
    err_console.print(f"[red]Transcript disabled: {escape(error.message)}[/red]")
    return None


def _record(
    transcript: Optional[TranscriptWriter],
    err_console: Console,
    speaker: str,
    text: str,
) -> Optional[TranscriptWriter]:
    """写一行对话记录；写入失败时提示一次并停用记录，对话继续。"""

    if transcript is None:
        return None
    try:
        transcript.append(speaker, text)
    except BusinessError as e:
        return _transcript_failed(err_console, e)
    return transcript


def run_loop(
    session: ConversationSession,
    interpreter: CommandInterpreter,
    read_line: ReadLine,
    console: Console,
    err_console: Console,
    transcript: Optional[TranscriptWriter] = None,
) -> int:
    while True:
        text = read_message(read_line)
        if text is None:
            return 0

        if is_command(text):
            try:
                outcome = interpreter.execute(text)
            except CommandParseError as e:
                err_console.print(f"[red]{e.message}[/red]")
                continue
            if outcome.kind == "exit":
                console.print(outcome.message)
                return 0
            if outcome.kind == "reset":
                session.reset()
                transcript = _record(transcript, err_console, NOTE_SPEAKER, outcome.message)
            style = "yellow" if outcome.kind == "unknown" else "green"
            err_console.print(outcome.message, style=style, markup=False)
            continue

        transcript = _record(transcript, err_console, session.params.user_name, text)
        reply = session.post(text)
        console.print(reply, markup=False, highlight=False)
        console.print()
        if reply:
            transcript = _record(transcript, err_console, session.params.persona_name, reply)


def build_session(settings: Settings, err_console: Console) -> ConversationSession:
    return ConversationSession(
        settings.openai_api_key,
        config=SessionConfig.from_settings(settings),
        retry_decider=make_retry_decider(err_console),
    )


def _fatal(err_console: Console, error: BusinessError) -> int:
    err_console.print(f"[bold red]FATAL ERROR:[/bold red] {escape(error.message)}")
    return 1


def _open_transcript(settings: Settings, err_console: Console) -> Optional[TranscriptWriter]:
    if not settings.transcript_dir:
        return None
    try:
        return TranscriptWriter(settings.transcript_dir)
    except BusinessError as e:
        return _transcript_failed(err_console, e)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    console = Console()
    err_console = Console(stderr=True)
    try:
        settings = load_settings(args.config, **settings_overrides(args))
    except ConfigurationError as e:
        return _fatal(err_console, e)
    setup_logger(settings)

    if settings.debug:
        handler = RichHandler(console=err_console, show_path=False)
        handler.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        logger.debug(
            "Settings: %s",
            settings.model_dump(exclude={"openai_api_key"}),
        )

    try:
        session = build_session(settings, err_console)
    except ConfigurationError as e:
        return _fatal(err_console, e)

    transcript = _open_transcript(settings, err_console)
    interpreter = CommandInterpreter(session.params, session.config.context_ceiling)
    prompt = f"[bold cyan]{session.params.user_name}>[/bold cyan] "
    try:
        return run_loop(session, interpreter, lambda: console.input(prompt), console, err_console, transcript)
    except KeyboardInterrupt:
        console.print()
        return 130
