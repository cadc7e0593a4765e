"""Command parsing utilities."""

from __future__ import annotations


def strip_reply_fallback(text: str) -> str:
    """Drop the quoted reply fallback Matrix clients prepend to replies.

    A reply body starts with `> <@sender> original` lines followed by a
    blank line; only the text after that belongs to the new message.
    """
    if not text.startswith("> "):
        return text
    lines = text.splitlines()
    index = 0
    while index < len(lines) and lines[index].startswith(">"):
        index += 1
    if index < len(lines) and not lines[index].strip():
        return "\n".join(lines[index + 1 :])
    return text


def split_message(text: str) -> tuple[str, ...]:
    """Split a message into whitespace separated tokens.

    Args:
        text: The message body.

    Returns:
        The tokens; index 0 is the candidate command word.
    """
    return tuple(strip_reply_fallback(text).split())
