from __future__ import annotations

from typing import Dict, List

from services.commands_registry import CommandRegistry


def grouped_command_lines(registry: CommandRegistry, *, is_admin: bool, prefix: str) -> Dict[str, List[str]]:
    """Help lines per group, in group order, hiding admin commands from non-admins."""
    grouped: Dict[str, List[str]] = {}
    for group, specs in registry.grouped(is_admin=is_admin).items():
        lines = []
        for spec in specs:
            line = f"`{spec.usage(prefix)}`"
            if spec.description:
                line += f" - {spec.description}"
            if spec.admin_only:
                line += " -- requires bot admin!"
            lines.append(line)
        grouped[group] = lines
    return grouped
