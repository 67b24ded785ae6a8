from __future__ import annotations

from typing import Optional, Sequence, Tuple


def capture_in_parens(text: str, start: int) -> Optional[Tuple[str, int]]:
    """Capture the text inside the parenthesis opened at ``start``.

    Nested pairs are followed to any depth. Returns the enclosed text and the
    index just past the matching ``)``, or None when it is never closed.
    """
    depth = 1
    index = start + 1
    while index < len(text):
        ch = text[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return text[start + 1 : index], index + 1
        index += 1
    return None


def index_of_subseq(seq: Sequence, subseq: Sequence, start: int = 0) -> Optional[int]:
    """First index >= ``start`` where ``subseq`` occurs in ``seq``, or None."""
    width = len(subseq)
    for index in range(max(start, 0), len(seq) - width + 1):
        if all(seq[index + offset] == subseq[offset] for offset in range(width)):
            return index
    return None
