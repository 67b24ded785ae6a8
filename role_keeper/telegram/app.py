from __future__ import annotations

from services.bot import run_bot


def run() -> None:
    run_bot()
