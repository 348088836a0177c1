"""Command-line options."""

import argparse
from typing import Any, Dict, Optional, Sequence

# argparse dest -> Settings field
_SETTINGS_FIELDS = {
    "key": "openai_api_key",
    "prompt": "prompt_template",
    "sys_prompt": "sys_prompt_template",
    "name": "persona_name",
    "user": "user_name",
    "maxtokens": "max_tokens",
    "temperature": "temperature",
    "model": "model",
    "debug": "debug",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpthing",
        description="Hold a conversation with a chat-completions model playing a persona.",
    )
    parser.add_argument("-p", "--prompt", default=None,
                        help="Template prepended to each message; $Message marks where the message goes.")
    parser.add_argument("-s", "--sys-prompt", dest="sys_prompt", default=None,
                        help="Template for the system prompt sent at the start of the conversation.")
    parser.add_argument("-n", "--name", default=None, help="The name the model should adopt.")
    parser.add_argument("-u", "--user", default=None, help="Your name, as the model should address you.")
    parser.add_argument("-k", "--key", default=None, help="Your OpenAI API key.")
    parser.add_argument("-M", "--maxtokens", type=int, default=None,
                        help="The maximum tokens the model should send in one message (default 512).")
    parser.add_argument("-T", "--temperature", type=float, default=None, help="The sampling temperature.")
    parser.add_argument("-m", "--model", default=None, help="Chat model name.")
    parser.add_argument("-c", "--config", default=None, help="Path to a config.json / config.yaml file.")
    parser.add_argument("--debug", action="store_true", default=None, help=argparse.SUPPRESS)
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed options onto Settings fields; options not given are None."""

    return {field: getattr(args, dest, None) for dest, field in _SETTINGS_FIELDS.items()}
