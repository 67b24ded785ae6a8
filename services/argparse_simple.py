from __future__ import annotations

from enum import Enum
from typing import List


class UnterminatedQuoteError(ValueError):
    """Raised when command text ends inside a quoted segment."""


class _State(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "'"
    DOUBLE_QUOTE = '"'


def split_command_line(text: str) -> List[str]:
    """Split command text on spaces while preserving quoted segments.

    Quotes are stripped; inside a quoted segment a backslash followed by the
    same quote character yields a literal quote. Every space outside quotes
    ends a token, so two consecutive spaces produce an empty token.
    """
    parts: List[str] = []
    current: List[str] = []
    state = _State.NORMAL
    i = 0
    while i < len(text):
        ch = text[i]
        i += 1
        if state is _State.NORMAL:
            if ch == " ":
                parts.append("".join(current))
                current = []
            elif ch == "'":
                state = _State.SINGLE_QUOTE
            elif ch == '"':
                state = _State.DOUBLE_QUOTE
            else:
                current.append(ch)
            continue

        quote = state.value
        if ch == "\\" and i < len(text) and text[i] == quote:
            current.append(quote)
            i += 1
        elif ch == quote:
            state = _State.NORMAL
        else:
            current.append(ch)

    if state is not _State.NORMAL:
        raise UnterminatedQuoteError(f"Missing closing {state.value} quote.")
    if current:
        parts.append("".join(current))
    return parts
