"""Find command invocations embedded in chat messages.

Two forms are recognised, and only one of them per message:

* leading: the message starts with the command prefix followed by a letter,
  e.g. ``.role add 123``. The whole remainder is one command, addressed to
  nobody (the empty label).
* addressed: ``(@bob: .ping)`` annotations anywhere in the text, each
  mapping an addressee label to the command text after the colon.

Text that merely resembles a command is skipped without complaint.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Tuple

from services.text_scan import capture_in_parens, index_of_subseq

COMMAND_PREFIX = "."
ADDRESS_MARKER = "(@"

_COMMAND_START_RE = re.compile(r"[a-zA-Z]")

logger = logging.getLogger(__name__)


def leading_command(text: str, prefix: str = COMMAND_PREFIX) -> Optional[str]:
    """Return the text after ``prefix`` if ``text`` is a leading-form command."""
    if not text.startswith(prefix):
        return None
    body = text[len(prefix) :]
    if not _COMMAND_START_RE.match(body):
        return None
    return body


def _addressed_candidate(span: str, prefix: str) -> Optional[Tuple[str, str]]:
    # span is everything between "(" and its matching ")", starting with "@"
    colon = span.find(":")
    if colon < 0:
        return None
    addressee = span[1:colon].strip()
    if not addressee:
        return None
    command_text = span[colon + 1 :].strip()
    if leading_command(command_text, prefix) is None:
        return None
    return addressee, command_text


def addressed_commands(text: str, prefix: str = COMMAND_PREFIX) -> Dict[str, str]:
    found: Dict[str, str] = {}
    cursor = 0
    while True:
        at = index_of_subseq(text, ADDRESS_MARKER, cursor)
        if at is None:
            break
        captured = capture_in_parens(text, at)
        if captured is None:
            cursor = at + 1
            continue
        span, end = captured
        candidate = _addressed_candidate(span, prefix)
        if candidate is None:
            cursor = at + 1
            continue
        addressee, command_text = candidate
        found[addressee] = command_text
        cursor = end
    return found


def extract_commands(text: str, prefix: str = COMMAND_PREFIX) -> Dict[str, str]:
    """Map addressee label -> command text for every command in ``text``.

    The leading form yields ``{"": body}`` with the prefix removed. The
    addressed form keeps the prefix on each command text. An empty mapping
    means the message holds no command.
    """
    text = text or ""
    body = leading_command(text, prefix)
    if body is not None:
        return {"": body}
    found = addressed_commands(text, prefix)
    if found:
        logger.debug("Found %d addressed command(s): %s", len(found), list(found))
    return found


def strip_prefix(command_text: str, prefix: str = COMMAND_PREFIX) -> str:
    """Drop a leading command prefix, if present."""
    if command_text.startswith(prefix):
        return command_text[len(prefix) :]
    return command_text
