"""Terminal front end: option parsing, the read/print loop and retry prompts."""

from gpthing.console.app import main

__all__ = ["main"]
