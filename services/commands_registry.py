from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from services.arg_schema import CommandSchema
from services.inline_commands import COMMAND_PREFIX

CommandHandler = Callable[[Any], Union[None, Awaitable[None]]]


GROUP_ORDER: List[str] = [
    "General",
    "Scope",
    "Admin",
]


class RegistryError(ValueError):
    """Raised when a registry is built from conflicting command specs."""


@dataclass(frozen=True)
class CommandSpec:
    name: str
    schema: CommandSchema
    handler: Optional[CommandHandler]
    admin_only: bool = False
    description: str = ""
    group: str = "General"

    def usage(self, prefix: str = COMMAND_PREFIX) -> str:
        return f"{prefix}{self.name} {self.schema.describe()}".rstrip()


class CommandRegistry(Mapping[str, CommandSpec]):
    """Read-only table of commands, built once at startup.

    Lookups are exact and case-sensitive; iteration follows registration order.
    """

    def __init__(self, specs: Iterable[CommandSpec]):
        table: Dict[str, CommandSpec] = {}
        for spec in specs:
            name = str(spec.name or "")
            if not name.strip() or " " in name:
                raise RegistryError(f"Invalid command name: {name!r}")
            if name in table:
                raise RegistryError(f"Duplicate command name: {name}")
            table[name] = spec
        self._commands = MappingProxyType(table)

    def __getitem__(self, name: str) -> CommandSpec:
        return self._commands[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def specs(self) -> List[CommandSpec]:
        return list(self._commands.values())

    def usage(self, name: str, prefix: str = COMMAND_PREFIX) -> str:
        return self._commands[name].usage(prefix)

    def visible_to(self, is_admin: bool) -> List[CommandSpec]:
        return [spec for spec in self.specs() if is_admin or not spec.admin_only]

    def grouped(self, *, is_admin: bool) -> Dict[str, List[CommandSpec]]:
        groups: Dict[str, List[CommandSpec]] = {name: [] for name in GROUP_ORDER}
        for spec in self.visible_to(is_admin):
            groups.setdefault(spec.group, []).append(spec)
        return {k: v for k, v in groups.items() if v}

    def validate(self) -> List[str]:
        issues: List[str] = []
        for spec in self.specs():
            if spec.handler is None:
                issues.append(f"Missing handler: {spec.name}")
            if spec.group not in GROUP_ORDER:
                issues.append(f"Unknown command group '{spec.group}' on {spec.name}")
        if not self._commands:
            issues.append("No commands registered")
        return issues
